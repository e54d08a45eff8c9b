"""Tests for network selection."""

from __future__ import annotations

import logging

import pytest

from conftest import MAIN_NETWORK, STAGING_NETWORK
from pybsn.core.errors import (
    NetworkNotFoundError,
    NetworkNotSelectedError,
    ServerError,
    ValidationError,
)
from pybsn.core.models import Network
from pybsn.core.network import NetworkContext


class Recorder:
    """Stands in for the server: lists networks and records binds."""

    def __init__(self, networks: list[Network]) -> None:
        self.networks = networks
        self.fetches = 0
        self.bound: list[int] = []

    def fetch(self) -> list[Network]:
        self.fetches += 1
        return list(self.networks)

    def bind(self, network: Network, token: str | None = None) -> str:
        self.bound.append(network.id)
        return token or "token-1"


def make_context(
    networks: list[Network], default_name: str = ""
) -> tuple[NetworkContext, Recorder]:
    recorder = Recorder(networks)
    context = NetworkContext(recorder.fetch, bind=recorder.bind, default_name=default_name)
    return context, recorder


class TestSelection:
    """Tests for set_network and current_network."""

    def test_current_before_selection(self) -> None:
        """Test that reading the network before selecting one fails."""
        context, _ = make_context([MAIN_NETWORK])
        assert not context.is_set
        with pytest.raises(NetworkNotSelectedError):
            context.current_network()
        assert context.snapshot() is None

    def test_set_then_current(self) -> None:
        """Test that the selected network round-trips."""
        context, recorder = make_context([MAIN_NETWORK])
        context.set_network(MAIN_NETWORK)
        assert context.current_network() == MAIN_NETWORK
        assert context.is_set
        assert recorder.bound == [1]

    def test_reselecting_same_network_skips_bind(self) -> None:
        """Test that selecting the current network again is a no-op."""
        context, recorder = make_context([MAIN_NETWORK])
        context.set_network(MAIN_NETWORK)
        context.set_network(Network(id=1, name="Main"))
        assert recorder.bound == [1]

    def test_switching_networks(self) -> None:
        """Test switching to another network."""
        context, recorder = make_context([MAIN_NETWORK, STAGING_NETWORK])
        context.set_network(MAIN_NETWORK)
        context.set_network(STAGING_NETWORK)
        assert context.current_network() == STAGING_NETWORK
        assert recorder.bound == [1, 2]

    def test_failed_bind_keeps_selection(self) -> None:
        """Test that a failing server-side bind leaves the old network."""

        def failing_bind(network: Network, token: str | None = None) -> str:
            if network.id == 2:
                raise ServerError("unavailable", status_code=503)
            return "token-1"

        context = NetworkContext(bind=failing_bind)
        context.set_network(MAIN_NETWORK)
        with pytest.raises(ServerError):
            context.set_network(STAGING_NETWORK)
        assert context.current_network() == MAIN_NETWORK

    def test_clear(self) -> None:
        """Test clearing the selection."""
        context, _ = make_context([MAIN_NETWORK])
        context.set_network(MAIN_NETWORK)
        context.clear()
        assert not context.is_set

    def test_list_without_fetcher(self) -> None:
        """Test listing networks when no fetcher is configured."""
        with pytest.raises(NetworkNotSelectedError):
            NetworkContext().list_networks()


class TestResolveByName:
    """Tests for selecting a network by name."""

    def test_case_insensitive_match(self) -> None:
        """Test that names match regardless of case."""
        context, _ = make_context([MAIN_NETWORK, STAGING_NETWORK])
        assert context.resolve_by_name("staging") == STAGING_NETWORK
        assert context.current_network() == STAGING_NETWORK

    def test_single_network_fallback(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that the only network is used when the name does not match."""
        context, _ = make_context([MAIN_NETWORK])
        with caplog.at_level(logging.WARNING, logger="pybsn.core.network"):
            assert context.resolve_by_name("Production") == MAIN_NETWORK
        assert "Production" in caplog.text

    def test_not_found_lists_candidates(self) -> None:
        """Test the error when no network matches."""
        context, _ = make_context([MAIN_NETWORK, STAGING_NETWORK])
        with pytest.raises(NetworkNotFoundError) as exc_info:
            context.resolve_by_name("Production")
        assert exc_info.value.candidates == [MAIN_NETWORK, STAGING_NETWORK]
        assert not context.is_set

    def test_empty_name(self) -> None:
        """Test that an empty name is rejected without listing networks."""
        context, recorder = make_context([MAIN_NETWORK])
        with pytest.raises(ValidationError):
            context.resolve_by_name("  ")
        assert recorder.fetches == 0


class TestEnsureReady:
    """Tests for ensure_ready fallbacks."""

    def test_keeps_current_network(self) -> None:
        """Test that an existing selection is returned without listing."""
        context, recorder = make_context([MAIN_NETWORK, STAGING_NETWORK])
        context.set_network(STAGING_NETWORK)
        assert context.ensure_ready("Main") == STAGING_NETWORK
        assert recorder.fetches == 0

    def test_uses_override(self) -> None:
        """Test that an explicit name is resolved."""
        context, _ = make_context([MAIN_NETWORK, STAGING_NETWORK], default_name="Main")
        assert context.ensure_ready("Staging") == STAGING_NETWORK

    def test_uses_default_name(self) -> None:
        """Test that the configured name is used without an override."""
        context, _ = make_context([MAIN_NETWORK, STAGING_NETWORK], default_name="Staging")
        assert context.ensure_ready() == STAGING_NETWORK

    def test_single_network_selected(self) -> None:
        """Test that the only network is selected automatically."""
        context, recorder = make_context([MAIN_NETWORK])
        assert context.ensure_ready() == MAIN_NETWORK
        assert recorder.bound == [1]

    def test_several_networks_require_choice(self) -> None:
        """Test that several networks without a name is an error."""
        context, _ = make_context([MAIN_NETWORK, STAGING_NETWORK])
        with pytest.raises(NetworkNotSelectedError) as exc_info:
            context.ensure_ready()
        assert exc_info.value.candidates == [MAIN_NETWORK, STAGING_NETWORK]

    def test_no_networks(self) -> None:
        """Test credentials with access to no networks."""
        context, _ = make_context([])
        with pytest.raises(NetworkNotSelectedError, match="no networks available"):
            context.ensure_ready()


class TestEnsureBound:
    """Tests for re-selecting the network for a new token."""

    def test_same_token_skips_bind(self) -> None:
        """Test that the token used by set_network needs no re-bind."""
        context, recorder = make_context([MAIN_NETWORK])
        context.set_network(MAIN_NETWORK)
        context.ensure_bound("token-1")
        assert recorder.bound == [1]

    def test_new_token_rebinds(self) -> None:
        """Test that a new token re-selects the current network once."""
        context, recorder = make_context([MAIN_NETWORK])
        context.set_network(MAIN_NETWORK)
        context.ensure_bound("token-2")
        context.ensure_bound("token-2")
        assert recorder.bound == [1, 1]

    def test_nothing_selected(self) -> None:
        """Test that no bind happens without a selected network."""
        context, recorder = make_context([MAIN_NETWORK])
        context.ensure_bound("token-2")
        assert recorder.bound == []

    def test_failed_rebind_is_not_retryable(self) -> None:
        """Test that a failed re-bind surfaces and is tried again next time."""
        calls: list[str | None] = []

        def flaky_bind(network: Network, token: str | None = None) -> str:
            calls.append(token)
            if token == "token-2" and len(calls) == 2:
                raise ServerError("unavailable", status_code=503)
            return token or "token-1"

        context = NetworkContext(bind=flaky_bind)
        context.set_network(MAIN_NETWORK)
        with pytest.raises(NetworkNotSelectedError) as exc_info:
            context.ensure_bound("token-2")
        assert not exc_info.value.retryable
        assert isinstance(exc_info.value.__cause__, ServerError)

        context.ensure_bound("token-2")
        assert calls == [None, "token-2", "token-2"]
        assert context.current_network() == MAIN_NETWORK

"""Tests for the authenticator and token store."""

from __future__ import annotations

import threading
import time
from base64 import b64encode

import httpx
import pytest
from pytest_httpx import HTTPXMock

from conftest import TOKEN_URL, FakeClock, add_token
from pybsn.core.auth import REFRESH_MARGIN, Authenticator, TokenStore
from pybsn.core.config import Config
from pybsn.core.errors import (
    AuthenticationError,
    ConfigurationError,
    RateLimitError,
    ServerError,
    TransportError,
)


class TestTokenStore:
    """Tests for TokenStore bookkeeping."""

    def test_refresh_point_precedes_expiry(self) -> None:
        """Test that the refresh point sits REFRESH_MARGIN before expiry."""
        store = TokenStore()
        store.update("tok", 3600, now=100.0)
        assert store.expires_at == 3700.0
        assert store.refresh_at == 3700.0 - REFRESH_MARGIN

    def test_short_lived_token_margin(self) -> None:
        """Test that very short tokens refresh at half their lifetime."""
        store = TokenStore()
        store.update("tok", 20, now=0.0)
        assert store.refresh_at == 10.0

    def test_is_fresh(self) -> None:
        """Test freshness around the refresh point."""
        store = TokenStore()
        assert not store.is_fresh(0.0)
        store.update("tok", 3600, now=0.0)
        assert store.is_fresh(3569.0)
        assert not store.is_fresh(3570.0)

    def test_clear(self) -> None:
        """Test that clearing drops the token."""
        store = TokenStore()
        store.update("tok", 3600, now=0.0)
        store.clear()
        assert store.access_token == ""
        assert not store.is_fresh(0.0)

    def test_repr_hides_token(self) -> None:
        """Test that the token never shows up in repr."""
        store = TokenStore()
        store.update("very-secret-token", 3600, now=0.0)
        assert "very-secret-token" not in repr(store)


class TestAuthenticate:
    """Tests for the client-credentials exchange."""

    def test_exchange_request(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test the form body and basic auth of the token request."""
        add_token(httpx_mock)

        assert auth.get_access_token() == "token-1"

        request = httpx_mock.get_request()
        assert request is not None
        assert request.method == "POST"
        assert request.content == b"grant_type=client_credentials"
        expected = b64encode(b"test-client:test-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    def test_token_is_cached(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that a fresh token is reused without another exchange."""
        add_token(httpx_mock)

        auth.authenticate()
        assert auth.is_authenticated
        assert auth.get_access_token() == "token-1"
        assert auth.get_access_token() == "token-1"
        assert len(httpx_mock.get_requests()) == 1

    def test_expired_token_refreshed_once(
        self, auth: Authenticator, clock: FakeClock, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a token past its expiry triggers exactly one refresh."""
        add_token(httpx_mock, "token-1", 3600)
        add_token(httpx_mock, "token-2", 3600)

        assert auth.get_access_token() == "token-1"
        clock.advance(3601)
        assert auth.get_access_token() == "token-2"
        assert auth.get_access_token() == "token-2"
        assert len(httpx_mock.get_requests()) == 2

    def test_refreshed_before_expiry(
        self, auth: Authenticator, clock: FakeClock, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a token within the refresh margin is not handed out."""
        add_token(httpx_mock, "token-1", 3600)
        add_token(httpx_mock, "token-2", 3600)

        obtained_at = clock()
        auth.get_access_token()
        clock.advance(3600 - REFRESH_MARGIN + 1)
        assert clock() < obtained_at + 3600
        assert auth.get_access_token() == "token-2"

    def test_force_reauthenticates(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that force=True exchanges credentials again."""
        add_token(httpx_mock, "token-1")
        add_token(httpx_mock, "token-2")

        auth.authenticate()
        auth.authenticate(force=True)
        assert auth.get_access_token() == "token-2"

    def test_invalidate(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that invalidation forces a new exchange."""
        add_token(httpx_mock, "token-1")
        add_token(httpx_mock, "token-2")

        auth.get_access_token()
        auth.invalidate()
        assert not auth.is_authenticated
        assert auth.get_access_token() == "token-2"

    def test_refresh_listener(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that listeners see every new token."""
        add_token(httpx_mock, "token-1")
        seen: list[str] = []
        auth.add_refresh_listener(seen.append)

        auth.get_access_token()
        auth.get_access_token()
        assert seen == ["token-1"]


class TestAuthenticateErrors:
    """Tests for token exchange failures."""

    def test_missing_credentials(self, clock: FakeClock, httpx_mock: HTTPXMock) -> None:
        """Test that missing credentials fail before any request."""
        auth = Authenticator(Config(client_id="", client_secret="s"), clock=clock)
        with pytest.raises(ConfigurationError) as exc_info:
            auth.get_access_token()
        assert exc_info.value.field == "client_id"
        assert httpx_mock.get_requests() == []

    def test_rejected_credentials(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that 401 from the token endpoint is an authentication error."""
        httpx_mock.add_response(
            url=TOKEN_URL,
            method="POST",
            status_code=401,
            json={"error": "invalid_client", "error_description": "Invalid client credentials"},
        )

        with pytest.raises(AuthenticationError) as exc_info:
            auth.get_access_token()
        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "invalid_client"
        assert exc_info.value.message == "Invalid client credentials"

    def test_bad_request_is_authentication_error(
        self, auth: Authenticator, httpx_mock: HTTPXMock
    ) -> None:
        """Test that invalid_grant on 400 is treated as rejected credentials."""
        httpx_mock.add_response(
            url=TOKEN_URL, method="POST", status_code=400, json={"error": "invalid_grant"}
        )
        with pytest.raises(AuthenticationError):
            auth.get_access_token()

    def test_server_error(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that 5xx from the token endpoint is a server error."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", status_code=503)
        with pytest.raises(ServerError):
            auth.get_access_token()

    def test_rate_limited(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that 429 from the token endpoint is a rate limit error."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", status_code=429)
        with pytest.raises(RateLimitError):
            auth.get_access_token()

    def test_network_failure(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test that connection failures become transport errors."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=TOKEN_URL)
        with pytest.raises(TransportError, match="connection refused"):
            auth.get_access_token()

    def test_missing_access_token(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test a success response without a token."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"expires_in": 3600})
        with pytest.raises(AuthenticationError, match="no access token"):
            auth.get_access_token()

    def test_invalid_expiry(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test a token with a non-positive lifetime."""
        httpx_mock.add_response(
            url=TOKEN_URL, method="POST", json={"access_token": "t", "expires_in": 0}
        )
        with pytest.raises(AuthenticationError, match="expires_in"):
            auth.get_access_token()
        assert not auth.is_authenticated

    def test_unreadable_response(self, auth: Authenticator, httpx_mock: HTTPXMock) -> None:
        """Test a success response that is not JSON."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", text="<html>oops</html>")
        with pytest.raises(AuthenticationError, match="unreadable"):
            auth.get_access_token()


class TestSingleFlight:
    """Tests for concurrent refreshes."""

    def test_concurrent_callers_share_one_exchange(
        self, auth: Authenticator, httpx_mock: HTTPXMock
    ) -> None:
        """Test that simultaneous callers trigger a single token request."""
        callers = 5
        barrier = threading.Barrier(callers)

        def slow_token(request: httpx.Request) -> httpx.Response:
            time.sleep(0.2)
            return httpx.Response(200, json={"access_token": "shared", "expires_in": 3600})

        httpx_mock.add_callback(slow_token, url=TOKEN_URL, method="POST")

        results: list[str] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            token = auth.get_access_token()
            with lock:
                results.append(token)

        threads = [threading.Thread(target=worker) for _ in range(callers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert results == ["shared"] * callers
        assert len(httpx_mock.get_requests()) == 1

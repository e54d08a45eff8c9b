"""Network selection for network-scoped API calls.

Most BSN.cloud resources live inside a network. The client keeps the selected
network in a :class:`NetworkContext` owned by the client instance, so several
clients in one process can target different networks.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .errors import BSNError, NetworkNotFoundError, NetworkNotSelectedError, ValidationError
from .models import Network

logger = logging.getLogger(__name__)


class NetworkContext:
    """Remembers which network subsequent scoped calls target.

    Attributes:
        default_name: Network name from configuration (``BS_NETWORK``), used by
            :meth:`ensure_ready` when nothing is selected yet.
    """

    def __init__(
        self,
        fetch_networks: Callable[[], list[Network]] | None = None,
        *,
        bind: Callable[[Network, str | None], str | None] | None = None,
        default_name: str = "",
    ) -> None:
        """Initialize the context.

        Args:
            fetch_networks: Returns the networks available to the credentials.
            bind: Selects a network server-side, using the given bearer token
                or the current one when None, and returns the token it used.
                Called before a network becomes current; if it raises, the
                selection is unchanged.
            default_name: Fallback network name for :meth:`ensure_ready`.
        """
        self._fetch_networks = fetch_networks
        self._bind = bind
        self.default_name = default_name
        self._lock = threading.Lock()
        self._bind_lock = threading.Lock()
        self._current: Network | None = None
        self._bound_token: str | None = None

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._current is not None

    def set_network(self, handle: Network) -> Network:
        """Make ``handle`` the current network."""
        with self._lock:
            if self._current is not None and self._current.id == handle.id:
                return self._current

        with self._bind_lock:
            token = self._bind(handle, None) if self._bind is not None else None
            with self._lock:
                self._current = handle
                self._bound_token = token
        logger.info("Using network: %s", handle)
        return handle

    def ensure_bound(self, token: str) -> None:
        """Select the current network server-side for ``token`` if not done yet.

        The server forgets the session network whenever a new token is issued,
        so scoped requests call this before going out with a token.

        Raises:
            NetworkNotSelectedError: If the server-side selection failed. The
                next call tries again.
        """
        if self._bind is None:
            return
        with self._bind_lock:
            with self._lock:
                network = self._current
                if network is None or self._bound_token == token:
                    return
                # Selected without a known token: the first token is the bound one
                if self._bound_token is None:
                    self._bound_token = token
                    return
            logger.debug("Re-selecting network %s for a new token", network)
            try:
                self._bind(network, token)
            except BSNError as e:
                raise NetworkNotSelectedError(
                    f"could not re-select network {network} after token refresh: {e}"
                ) from e
            with self._lock:
                self._bound_token = token

    def current_network(self) -> Network:
        """Return the selected network.

        Raises:
            NetworkNotSelectedError: If no network has been selected.
        """
        with self._lock:
            if self._current is None:
                raise NetworkNotSelectedError()
            return self._current

    def snapshot(self) -> Network | None:
        """Return the selected network, or None."""
        with self._lock:
            return self._current

    def clear(self) -> None:
        with self._lock:
            self._current = None
            self._bound_token = None

    def list_networks(self) -> list[Network]:
        if self._fetch_networks is None:
            raise NetworkNotSelectedError("no way to list networks; select one explicitly")
        return self._fetch_networks()

    def resolve_by_name(self, name: str) -> Network:
        """Select the network called ``name`` (case-insensitive, exact).

        If the name matches nothing but exactly one network is available, that
        network is selected.

        Raises:
            ValidationError: If ``name`` is empty.
            NetworkNotFoundError: If no network matches; carries the candidates.
        """
        if not name or not name.strip():
            raise ValidationError.for_field("network_name", name, "network name cannot be empty")

        networks = self.list_networks()
        wanted = name.strip().casefold()
        for network in networks:
            if network.name.casefold() == wanted:
                return self.set_network(network)

        if len(networks) == 1:
            logger.warning(
                "Network '%s' not found, using the only available network: %s",
                name,
                networks[0],
            )
            return self.set_network(networks[0])

        raise NetworkNotFoundError(name, networks)

    def ensure_ready(self, override: str | None = None) -> Network:
        """Make sure a network is selected.

        Tries, in order: the already-selected network, ``override`` or the
        configured default name, and the only available network.

        Raises:
            NetworkNotFoundError: If the requested name does not exist.
            NetworkNotSelectedError: If several networks exist and none was named.
        """
        current = self.snapshot()
        if current is not None:
            return current

        requested = override or self.default_name
        if requested:
            return self.resolve_by_name(requested)

        networks = self.list_networks()
        if len(networks) == 1:
            return self.set_network(networks[0])

        if not networks:
            raise NetworkNotSelectedError("no networks available")
        raise NetworkNotSelectedError(
            "network selection required: pass a network name or set BS_NETWORK",
            candidates=networks,
        )

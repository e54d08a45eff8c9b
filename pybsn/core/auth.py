"""OAuth2 client-credentials authentication for the BSN.cloud API.

Authentication Flow:
1. Client POSTs ``grant_type=client_credentials`` to the token endpoint using
   HTTP basic auth with the client id and secret
2. The returned bearer token is stored along with its expiry
3. Every request asks :meth:`Authenticator.get_access_token` for the token,
   which refreshes it shortly before it expires

Concurrent refreshes are collapsed into a single token-endpoint round trip.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import Config
from .errors import AuthenticationError, ConfigurationError, TransportError
from .models import TokenResponse
from .transport import error_from_response, parse_error_body

if TYPE_CHECKING:
    from typing import Self

logger = logging.getLogger(__name__)

# Refresh this long before the recorded expiry
REFRESH_MARGIN = 30.0


class TokenStore:
    """Holds the current bearer token and its lifetime.

    Times are in seconds on the authenticator's clock.
    """

    def __init__(self) -> None:
        self.access_token: str = ""
        self.obtained_at: float = 0.0
        self.expires_at: float = 0.0
        self.refresh_at: float = 0.0

    def update(self, token: str, expires_in: float, now: float) -> None:
        margin = min(REFRESH_MARGIN, expires_in / 2)
        self.access_token = token
        self.obtained_at = now
        self.expires_at = now + expires_in
        self.refresh_at = self.expires_at - margin

    def clear(self) -> None:
        self.access_token = ""
        self.obtained_at = self.expires_at = self.refresh_at = 0.0

    def is_fresh(self, now: float) -> bool:
        """A token is fresh until its refresh point, which precedes expiry."""
        return bool(self.access_token) and now < self.refresh_at

    def __repr__(self) -> str:
        state = "set" if self.access_token else "empty"
        return f"TokenStore(token={state}, expires_at={self.expires_at})"


class _Flight:
    """An in-flight token exchange that other callers can wait on."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.token: str | None = None
        self.error: BaseException | None = None


class Authenticator:
    """Exchanges client credentials for bearer tokens and keeps them fresh.

    Example:
        >>> auth = Authenticator(Config.load())
        >>> auth.authenticate()
        >>> token = auth.get_access_token()

    Attributes:
        config: Client configuration holding the credentials.
        store: The token store. Other components must not read it directly.
    """

    def __init__(
        self,
        config: Config,
        http_client: httpx.Client | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the authenticator.

        Args:
            config: Configuration with client id, secret and token endpoint.
            http_client: Client used for the token exchange. A private one is
                created (and closed by :meth:`close`) when omitted.
            clock: Source of the current time in seconds.
        """
        self.config = config
        self.store = TokenStore()
        self._clock = clock
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(timeout=config.timeout)
        self._lock = threading.Lock()
        self._flights: dict[str, _Flight] = {}
        self._listeners: list[Callable[[str], None]] = []

    @property
    def is_authenticated(self) -> bool:
        """True while a token is held and has not reached its refresh point."""
        with self._lock:
            return self.store.is_fresh(self._clock())

    @property
    def expires_at(self) -> float:
        return self.store.expires_at

    def add_refresh_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callable invoked with every newly obtained token."""
        self._listeners.append(listener)

    def authenticate(self, *, force: bool = False) -> None:
        """Obtain a bearer token.

        Args:
            force: Exchange credentials even if the current token is still fresh.

        Raises:
            ConfigurationError: If the credentials are missing.
            AuthenticationError: If the credentials are rejected.
            TransportError: If the token endpoint cannot be reached.
        """
        if force:
            with self._lock:
                self.store.clear()
        self.get_access_token()

    def get_access_token(self) -> str:
        """Return a token that is valid now, refreshing it if necessary.

        Only one caller per credential performs the exchange; concurrent callers
        wait for it and share its result or error.

        Raises:
            ConfigurationError: If the credentials are missing.
            AuthenticationError: If the credentials are rejected.
            TransportError: If the token endpoint cannot be reached.
        """
        key = self.config.client_id
        with self._lock:
            if self.store.is_fresh(self._clock()):
                return self.store.access_token
            flight = self._flights.get(key)
            leader = flight is None
            if flight is None:
                flight = self._flights[key] = _Flight()

        if not leader:
            logger.debug("Waiting for in-flight token refresh")
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            assert flight.token is not None
            return flight.token

        try:
            token = self._exchange()
        except BaseException as e:
            flight.error = e
            raise
        else:
            flight.token = token
        finally:
            with self._lock:
                self._flights.pop(key, None)
            flight.done.set()

        for listener in self._listeners:
            listener(token)
        return token

    def invalidate(self) -> None:
        """Drop the current token so the next request re-authenticates."""
        with self._lock:
            self.store.clear()
        logger.debug("Access token invalidated")

    def _exchange(self) -> str:
        """Perform the client-credentials POST and update the store."""
        self._check_credentials()

        logger.debug("Requesting access token from %s", self.config.token_endpoint)
        try:
            response = self._http_client.post(
                self.config.token_endpoint,
                data={"grant_type": "client_credentials"},
                auth=(
                    self.config.client_id,
                    self.config.client_secret.get_secret_value(),
                ),
                headers={"Accept": "application/json"},
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"POST {self.config.token_endpoint}", e) from e

        # invalid_client / invalid_grant come back as 400 or 401
        if response.status_code in (400, 401, 403):
            code, message, details = parse_error_body(response)
            raise AuthenticationError(
                message or "client credentials rejected",
                status_code=response.status_code,
                code=code or "invalid_client",
                details=details,
            )
        if not response.is_success:
            raise error_from_response(response)

        try:
            token_response = TokenResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise AuthenticationError(
                "token endpoint returned an unreadable response",
                status_code=response.status_code,
            ) from e

        if not token_response.access_token:
            raise AuthenticationError("token endpoint returned no access token")
        if token_response.expires_in <= 0:
            raise AuthenticationError(
                f"token endpoint returned invalid expires_in: {token_response.expires_in}"
            )

        with self._lock:
            self.store.update(
                token_response.access_token,
                token_response.expires_in,
                self._clock(),
            )
        logger.info("Obtained access token (expires in %ss)", token_response.expires_in)
        return token_response.access_token

    def _check_credentials(self) -> None:
        if not self.config.client_id.strip():
            raise ConfigurationError(
                "client_id", "field is required", "set BS_CLIENT_ID environment variable"
            )
        if not self.config.client_secret.get_secret_value().strip():
            raise ConfigurationError(
                "client_secret", "field is required", "set BS_SECRET environment variable"
            )
        if not self.config.token_endpoint:
            raise ConfigurationError("token_endpoint", "field is required")

    def close(self) -> None:
        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit - close the private HTTP client if any."""
        self.close()


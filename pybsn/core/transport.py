"""HTTP transport for the BSN.cloud API.

Attaches the bearer token and timeout to every request, optionally traces the
traffic, and turns every outcome into either a decoded body or one of the
classified errors from :mod:`pybsn.core.errors`.
"""

from __future__ import annotations

import logging
import time
from functools import partial
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, Field

from .config import Config
from .errors import (
    APIError,
    AuthenticationError,
    ConflictError,
    NetworkNotSelectedError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TransportError,
    ValidationError,
)
from .models import Network
from .retry import RetryPolicy

if TYPE_CHECKING:
    from typing import Self

    from .auth import Authenticator
    from .network import NetworkContext

logger = logging.getLogger(__name__)

USER_AGENT = "pybsn/0.1"

# Retried without caller opt-in
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# Longest error body kept verbatim as details
MAX_ERROR_BODY = 500

# Longest body written to the debug trace
MAX_TRACE_BODY = 2000


class RequestOptions(BaseModel):
    """Per-request settings.

    Unset fields fall back to the transport defaults. :meth:`merge` applies
    later values over earlier ones.
    """

    timeout: float | None = Field(default=None, description="Overrides Config.timeout")
    headers: dict[str, str] = Field(default_factory=dict)
    scoped: bool = Field(default=False, description="Requires a selected network")
    network: Network | None = Field(default=None, description="Network snapshot to use")
    retry: bool | None = Field(
        default=None,
        description="True opts in, False opts out, None retries idempotent methods only",
    )
    authenticate: bool = True
    token: str | None = Field(default=None, description="Explicit bearer token")
    raw: bool = Field(default=False, description="Return the body as bytes")

    def merge(self, **overrides: Any) -> RequestOptions:
        """Return a copy with the given options applied; headers are combined."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if "headers" in updates:
            updates["headers"] = {**self.headers, **updates["headers"]}
        return self.model_copy(update=updates)


def parse_error_body(response: httpx.Response) -> tuple[str, str, str]:
    """Extract ``(code, message, details)`` from an error response body."""
    code = message = details = ""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        code = str(body.get("error") or body.get("code") or "")
        message = str(body.get("error_description") or body.get("message") or "")
        details = str(body.get("details") or "")

    # If we couldn't parse the error, keep a short raw body
    if not code and not message:
        text = response.text
        if text and len(text) < MAX_ERROR_BODY:
            details = text

    return code, message, details


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def error_from_response(response: httpx.Response) -> APIError:
    """Classify a non-success response."""
    status = response.status_code
    code, message, details = parse_error_body(response)
    code = code or response.reason_phrase
    kwargs: dict[str, Any] = {"status_code": status, "code": code, "details": details}

    if status == 401:
        return AuthenticationError(message or "invalid or expired token", **kwargs)
    if status == 403:
        return AuthenticationError(message or "insufficient permissions", **kwargs)
    if status == 404:
        return NotFoundError(message or "resource not found", **kwargs)
    if status == 409:
        return ConflictError(message or "request conflicts with current state", **kwargs)
    if status == 429:
        return RateLimitError(
            message or "rate limit exceeded",
            retry_after=_retry_after(response),
            **kwargs,
        )
    if 400 <= status < 500:
        return ValidationError(message or "request rejected", **kwargs)
    return ServerError(message or "server error", **kwargs)


def _redact(headers: httpx.Headers | dict[str, str]) -> dict[str, str]:
    return {
        k: ("***" if k.lower() in ("authorization", "cookie") else v)
        for k, v in headers.items()
    }


def _trace_body(content: bytes | None) -> str:
    if not content:
        return ""
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        return f"<{len(content)} bytes>"
    if len(text) > MAX_TRACE_BODY:
        return text[:MAX_TRACE_BODY] + f"... <{len(text)} chars>"
    return text


class Transport:
    """Issues authenticated requests and classifies their outcome.

    Example:
        >>> transport = Transport(config, authenticator, network=context)
        >>> body = transport.request(
        ...     "GET", "/2022/06/REST/Devices", options=RequestOptions(scoped=True)
        ... )

    Attributes:
        config: Client configuration (base URL, timeout, debug tracing).
        retry_policy: Policy applied to retryable requests.
    """

    def __init__(
        self,
        config: Config,
        authenticator: Authenticator,
        http_client: httpx.Client | None = None,
        *,
        network: NetworkContext | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.config = config
        self.authenticator = authenticator
        self.network = network
        self.retry_policy = retry_policy or RetryPolicy(config.max_attempts)
        self._owns_http_client = http_client is None
        self._http_client = http_client or new_http_client(config)

    def url_for(self, path: str) -> str:
        """Resolve a path against the base URL; absolute URLs pass through."""
        if path.startswith(("http://", "https://")):
            return path
        return self.config.base_url.rstrip("/") + "/" + path.lstrip("/")

    def should_retry(self, method: str, options: RequestOptions) -> bool:
        if options.retry is not None:
            return options.retry
        return method in IDEMPOTENT_METHODS

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        content: bytes | None = None,
        data: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> Any:
        """Send a request and return the decoded response body.

        Args:
            method: HTTP method.
            path: Path relative to the base URL, or an absolute URL.
            json: JSON body.
            params: Query parameters.
            content: Raw body bytes.
            data: Form body.
            options: Per-request options.

        Returns:
            Decoded JSON, the text body if it is not JSON, None for an empty
            body, or bytes when ``options.raw`` is set.

        Raises:
            NetworkNotSelectedError: If the request is scoped and no network is selected.
            AuthenticationError: On 401/403.
            NotFoundError: On 404.
            ConflictError: On 409.
            RateLimitError: On 429.
            ValidationError: On other 4xx responses.
            ServerError: On 5xx responses.
            TransportError: If no response was received.
        """
        opts = options or RequestOptions()
        method = method.upper()
        url = self.url_for(path)

        if opts.scoped and opts.network is None:
            if self.network is None:
                raise NetworkNotSelectedError("scoped request without a network context")
            opts = opts.merge(network=self.network.current_network())

        send = partial(
            self._send_once,
            method,
            url,
            json=json,
            params=params,
            content=content,
            data=data,
            options=opts,
        )
        if self.should_retry(method, opts) and self.retry_policy.max_attempts > 1:
            return self.retry_policy.call(send, description=f"{method} {url}")
        return send()

    def _send_once(
        self,
        method: str,
        url: str,
        *,
        json: Any,
        params: dict[str, Any] | None,
        content: bytes | None,
        data: dict[str, Any] | None,
        options: RequestOptions,
    ) -> Any:
        headers = dict(options.headers)
        token = options.token
        if token is None and options.authenticate:
            token = self.authenticator.get_access_token()
            if options.scoped and self.network is not None:
                self.network.ensure_bound(token)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        timeout = options.timeout if options.timeout is not None else self.config.timeout
        request = self._http_client.build_request(
            method,
            url,
            json=json,
            params=params,
            content=content,
            data=data,
            headers=headers,
            timeout=timeout,
        )

        if self.config.debug:
            logger.debug(
                "-> %s %s network=%s headers=%s body=%s",
                method,
                request.url,
                options.network.id if options.network else None,
                _redact(request.headers),
                _trace_body(content if content is not None else request.read()),
            )

        started = time.monotonic()
        try:
            response = self._http_client.send(request)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {url} (timed out after {timeout}s)", e) from e
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url}", e) from e

        if self.config.debug:
            logger.debug(
                "<- %s %s %d (%.0fms) body=%s",
                method,
                request.url,
                response.status_code,
                (time.monotonic() - started) * 1000,
                _trace_body(response.content),
            )

        if not response.is_success:
            error = error_from_response(response)
            if response.status_code == 401 and options.token is None:
                self.authenticator.invalidate()
            raise error

        if options.raw:
            return response.content
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

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
        """Context manager exit - close the HTTP client if owned."""
        self.close()


def new_http_client(config: Config) -> httpx.Client:
    """Create the shared ``httpx.Client`` used by the client components."""
    return httpx.Client(
        timeout=config.timeout,
        follow_redirects=True,
        headers={"Accept": "application/json", "User-Agent": USER_AGENT},
    )

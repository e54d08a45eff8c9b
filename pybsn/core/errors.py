"""Error taxonomy for the BSN.cloud client.

Every error raised by the client derives from :class:`BSNError` and carries a
stable :class:`ErrorKind` tag plus a ``retryable`` flag, so callers can branch
with ``match err.kind:`` or the ``is_*`` predicates instead of matching on
message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable classification tag carried by every client error."""

    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    NETWORK_NOT_SELECTED = "network_not_selected"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    TRANSPORT = "transport"
    UPLOAD = "upload"
    HASH_MISMATCH = "hash_mismatch"


class BSNError(Exception):
    """Base exception for all client errors."""

    kind: ErrorKind = ErrorKind.TRANSPORT
    retryable: bool = False


class ConfigurationError(BSNError):
    """Raised when credentials or options are missing or malformed."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, field: str, reason: str, suggestion: str = "") -> None:
        self.field = field
        self.reason = reason
        self.suggestion = suggestion
        message = f"configuration error: {field} - {reason}"
        if suggestion:
            message += f" (suggestion: {suggestion})"
        super().__init__(message)


class NetworkNotSelectedError(BSNError):
    """Raised when a network-scoped call is made without a selected network."""

    kind = ErrorKind.NETWORK_NOT_SELECTED

    def __init__(
        self,
        message: str = "no network selected",
        candidates: list[Any] | None = None,
    ) -> None:
        self.candidates = list(candidates or [])
        super().__init__(message)


class APIError(BSNError):
    """An error response returned by the API.

    Attributes:
        status_code: HTTP status code (0 when the error was detected client-side).
        code: Short machine-readable error code.
        message: Human-readable description.
        details: Extra detail, often the raw response body.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        code: str = "",
        details: str = "",
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(self._format())

    def _format(self) -> str:
        text = self.message
        if self.status_code:
            text = f"API error {self.status_code}"
            if self.code:
                text += f" ({self.code})"
            text += f": {self.message}"
        if self.details:
            text += f" - {self.details}"
        return text


class AuthenticationError(APIError):
    """Raised when credentials or the bearer token are rejected."""

    kind = ErrorKind.AUTHENTICATION


class NotFoundError(APIError):
    """Raised on 404 responses."""

    kind = ErrorKind.NOT_FOUND


class NetworkNotFoundError(NotFoundError):
    """Raised when a requested network name matches none of the candidates."""

    def __init__(self, name: str, candidates: list[Any]) -> None:
        self.name = name
        self.candidates = list(candidates)
        names = ", ".join(getattr(c, "name", str(c)) for c in self.candidates)
        super().__init__(
            f"network '{name}' not found",
            code="network_not_found",
            details=f"available networks: {names}" if names else "no networks available",
        )


class ValidationError(APIError):
    """Raised for rejected input, either client-side or from a 4xx response."""

    kind = ErrorKind.VALIDATION
    field: str | None = None
    value: Any = None

    @classmethod
    def for_field(cls, field: str, value: Any, reason: str) -> ValidationError:
        """Build a client-side validation error for a single field."""
        error = cls(f"{field}={value!r} - {reason}", code="validation_error")
        error.field = field
        error.value = value
        return error


class ConflictError(APIError):
    """Raised on 409 responses, e.g. an upload already in progress."""

    kind = ErrorKind.CONFLICT


class RateLimitError(APIError):
    """Raised on 429 responses."""

    kind = ErrorKind.RATE_LIMIT
    retryable = True

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs: Any) -> None:
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class ServerError(APIError):
    """Raised on 5xx responses."""

    kind = ErrorKind.SERVER
    retryable = True


class TransportError(BSNError):
    """Raised when the request never produced a response (connect, timeout)."""

    kind = ErrorKind.TRANSPORT
    retryable = True

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        message = f"network error during {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class UploadError(BSNError):
    """Raised when an upload session fails or is aborted."""

    kind = ErrorKind.UPLOAD

    def __init__(self, message: str, session_id: str | None = None) -> None:
        self.session_id = session_id
        if session_id:
            message = f"{message} (session {session_id})"
        super().__init__(message)


class UploadTimeoutError(UploadError, TimeoutError):
    """Raised when server-side processing does not finish within the wait limit.

    The session id is preserved so the caller can poll again.
    """


class UploadCancelledError(UploadError):
    """Raised when the caller cancels an upload while it is being polled."""


class HashMismatchError(BSNError):
    """Raised when the uploaded content fails SHA-1 verification.

    Never retried: the whole upload has to be re-run from the hashing step.
    """

    kind = ErrorKind.HASH_MISMATCH

    def __init__(
        self,
        expected: str,
        actual: str | None = None,
        session_id: str | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.session_id = session_id
        message = f"content hash verification failed: expected {expected}"
        if actual:
            message += f", got {actual}"
        if session_id:
            message += f" (session {session_id})"
        super().__init__(message)


def _is(err: BaseException, kind: ErrorKind) -> bool:
    return isinstance(err, BSNError) and err.kind is kind


def is_configuration_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.CONFIGURATION)


def is_authentication_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.AUTHENTICATION)


def is_network_not_selected_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.NETWORK_NOT_SELECTED)


def is_not_found_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.NOT_FOUND)


def is_validation_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.VALIDATION)


def is_conflict_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.CONFLICT)


def is_rate_limit_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.RATE_LIMIT)


def is_server_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.SERVER)


def is_transport_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.TRANSPORT)


def is_upload_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.UPLOAD)


def is_hash_mismatch_error(err: BaseException) -> bool:
    return _is(err, ErrorKind.HASH_MISMATCH)


def is_retryable_error(err: BaseException) -> bool:
    """Check whether an error might succeed if the same request is repeated."""
    return isinstance(err, BSNError) and err.retryable

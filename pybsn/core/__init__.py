"""Session and transfer core of the BSN.cloud client."""

from .auth import Authenticator, TokenStore
from .config import Config
from .errors import (
    APIError,
    AuthenticationError,
    BSNError,
    ConfigurationError,
    ConflictError,
    ErrorKind,
    HashMismatchError,
    NetworkNotFoundError,
    NetworkNotSelectedError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TransportError,
    UploadCancelledError,
    UploadError,
    UploadTimeoutError,
    ValidationError,
    is_authentication_error,
    is_configuration_error,
    is_conflict_error,
    is_hash_mismatch_error,
    is_network_not_selected_error,
    is_not_found_error,
    is_rate_limit_error,
    is_retryable_error,
    is_server_error,
    is_transport_error,
    is_upload_error,
    is_validation_error,
)
from .models import (
    ContentFile,
    Device,
    DeviceError,
    ListQuery,
    Network,
    Page,
    SetupRecord,
    Subscription,
    UploadResult,
    UploadSession,
    UploadStatus,
)
from .network import NetworkContext
from .pager import Pager
from .retry import RetryPolicy
from .transport import RequestOptions, Transport
from .upload import ContentSource, UploadEngine

__all__ = [
    # Auth
    "Authenticator",
    "TokenStore",
    # Config
    "Config",
    # Errors
    "APIError",
    "AuthenticationError",
    "BSNError",
    "ConfigurationError",
    "ConflictError",
    "ErrorKind",
    "HashMismatchError",
    "NetworkNotFoundError",
    "NetworkNotSelectedError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "TransportError",
    "UploadCancelledError",
    "UploadError",
    "UploadTimeoutError",
    "ValidationError",
    "is_authentication_error",
    "is_configuration_error",
    "is_conflict_error",
    "is_hash_mismatch_error",
    "is_network_not_selected_error",
    "is_not_found_error",
    "is_rate_limit_error",
    "is_retryable_error",
    "is_server_error",
    "is_transport_error",
    "is_upload_error",
    "is_validation_error",
    # Models
    "ContentFile",
    "Device",
    "DeviceError",
    "ListQuery",
    "Network",
    "Page",
    "SetupRecord",
    "Subscription",
    "UploadResult",
    "UploadSession",
    "UploadStatus",
    # Requests
    "NetworkContext",
    "Pager",
    "RequestOptions",
    "RetryPolicy",
    "Transport",
    # Uploads
    "ContentSource",
    "UploadEngine",
]

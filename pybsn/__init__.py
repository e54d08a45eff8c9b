from .client import BSNClient
from .core import (
    BSNError,
    Config,
    ContentSource,
    ErrorKind,
    ListQuery,
    Network,
)

__all__ = [
    "BSNClient",
    "BSNError",
    "Config",
    "ContentSource",
    "ErrorKind",
    "ListQuery",
    "Network",
]

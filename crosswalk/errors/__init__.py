"""Error handling module."""
from crosswalk.errors.exceptions import (
    AIError,
    AuthenticationError,
    CatalogError,
    ConfigurationError,
    CrosswalkError,
    ItemTimeoutError,
    RateLimitExceeded,
    ValidationFailed,
    error_code,
    is_recoverable,
)

__all__ = [
    "AIError",
    "AuthenticationError",
    "CatalogError",
    "ConfigurationError",
    "CrosswalkError",
    "ItemTimeoutError",
    "RateLimitExceeded",
    "ValidationFailed",
    "error_code",
    "is_recoverable",
]

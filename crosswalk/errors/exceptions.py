"""Custom exception hierarchy for crosswalk matching errors."""
from typing import Any, Dict, Optional


class CrosswalkError(Exception):
    """Base exception for all matching engine errors."""

    code = "UNKNOWN"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize error with message and optional structured details."""
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationFailed(CrosswalkError):
    """Raised when a competitor record is malformed or carries no usable signal."""

    code = "VALIDATION_FAILED"


class CatalogError(CrosswalkError):
    """Raised when the catalog collaborator hands over unusable data."""

    code = "CATALOG_ERROR"


class ConfigurationError(CrosswalkError):
    """Raised when configuration is invalid."""

    code = "CONFIGURATION_ERROR"


class AIError(CrosswalkError):
    """Raised when the inference service fails (timeout, non-2xx, bad body).

    ``transient`` marks failures worth retrying inside the client
    (network errors, timeouts, 429, 5xx).
    """

    code = "AI_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        transient: bool = False,
    ):
        self.status_code = status_code
        self.transient = transient
        super().__init__(message, details)


class AuthenticationError(AIError):
    """Raised on 401/403 from the inference service. Never retried."""

    code = "AUTHENTICATION_ERROR"


class RateLimitExceeded(AIError):
    """Raised on HTTP 429. Retried with backoff, never terminal."""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        status_code: Optional[int] = 429,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code, details=details, transient=True)


class ItemTimeoutError(CrosswalkError):
    """Raised when a batch item exceeds its wall-clock budget."""

    code = "TIMEOUT"


_NON_RECOVERABLE = (ValidationFailed, CatalogError, ConfigurationError, AuthenticationError)


def error_code(exc: BaseException) -> str:
    """Map any exception onto the error taxonomy code."""
    if isinstance(exc, CrosswalkError):
        return exc.code
    return "UNKNOWN"


def is_recoverable(exc: BaseException) -> bool:
    """Whether retrying the operation that raised ``exc`` can succeed."""
    return not isinstance(exc, _NON_RECOVERABLE)

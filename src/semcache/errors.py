"""
semcache - Core Error Types

Defines the exception hierarchy for the semantic query cache.
All exceptions inherit from SemanticCacheError for consistent error handling.

Provider failures are normally carried as typed ProviderResult values
(see semcache.providers.base) and only turned into exceptions at the
boundary where they are logged or surfaced.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """
    Standard error codes for structured error responses.

    Used by callers that want to branch on the failure category.
    """

    # Input validation errors
    INVALID_INPUT = "INVALID_INPUT"

    # Provider errors
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"

    # Cache errors
    CACHE_FAILURE = "CACHE_FAILURE"
    CACHE_DISABLED = "CACHE_DISABLED"
    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"
    NOT_FOUND = "NOT_FOUND"

    # Configuration errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ProviderErrorKind(str, Enum):
    """Classification of an embedding provider failure."""

    TRANSIENT = "transient"  # rate limited / unavailable, retried
    FATAL = "fatal"  # auth, malformed request or response, not retried


class SemanticCacheError(Exception):
    """Base exception for all semcache errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(SemanticCacheError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, status_code=500)


class CacheError(SemanticCacheError):
    """Base exception for cache-related errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, status_code=500)


class CacheOperationError(CacheError):
    """Raised when a cache operation fails."""

    pass


class DimensionMismatchError(CacheError):
    """
    Raised when vectors of unequal length are compared or stored.

    Indicates corrupted state (e.g. the provider model changed dimension
    without the cache being invalidated). Never swallowed by the facade.
    """

    def __init__(self, expected: int, actual: int, details: dict[str, Any] | None = None):
        message = f"Embedding dimension mismatch: expected {expected}, got {actual}"
        error_details = details or {}
        error_details.update(
            {
                "expected": expected,
                "actual": actual,
                "error_code": ErrorCode.DIMENSION_MISMATCH,
            }
        )
        super().__init__(message, error_details)
        self.expected = expected
        self.actual = actual


class NotFoundError(SemanticCacheError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        message = f"{resource} not found: {identifier}"
        super().__init__(message, {"resource": resource, "id": identifier}, status_code=404)


class ProviderError(SemanticCacheError):
    """Base exception for embedding provider errors."""

    kind: ProviderErrorKind = ProviderErrorKind.FATAL

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int = 502,
    ):
        super().__init__(message, details, status_code=status_code)


class ProviderTransientError(ProviderError):
    """Raised when the provider is rate limited or temporarily unavailable."""

    kind = ProviderErrorKind.TRANSIENT

    def __init__(
        self,
        provider: str,
        reason: str,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        message = f"Provider {provider} temporarily unavailable: {reason}"
        error_details = details or {}
        error_details.update(
            {
                "provider": provider,
                "http_status": http_status,
                "error_code": ErrorCode.RATE_LIMITED if http_status == 429 else ErrorCode.PROVIDER_UNAVAILABLE,
            }
        )
        super().__init__(message, error_details, status_code=503)
        self.provider = provider
        self.http_status = http_status


class ProviderFatalError(ProviderError):
    """Raised when the provider rejects the request (auth, malformed input)."""

    kind = ProviderErrorKind.FATAL

    def __init__(
        self,
        provider: str,
        reason: str,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        message = f"Provider {provider} request failed: {reason}"
        error_details = details or {}
        error_details.update(
            {
                "provider": provider,
                "http_status": http_status,
                "error_code": ErrorCode.PROVIDER_ERROR,
            }
        )
        super().__init__(message, error_details, status_code=502)
        self.provider = provider
        self.http_status = http_status


DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 503})


def classify_status(
    status_code: int,
    retryable_status_codes: frozenset[int] | set[int] | None = None,
) -> ProviderErrorKind:
    """
    Classify an HTTP status code returned by the embedding provider.

    Args:
        status_code: HTTP status code of a failed response
        retryable_status_codes: Codes treated as transient (default: 429, 503)

    Returns:
        ProviderErrorKind.TRANSIENT for retryable codes, FATAL otherwise
    """
    retryable = DEFAULT_RETRYABLE_STATUS_CODES if retryable_status_codes is None else retryable_status_codes
    if status_code in retryable:
        return ProviderErrorKind.TRANSIENT
    return ProviderErrorKind.FATAL


def is_retryable_error(error: Exception) -> bool:
    """
    Check if an error is transient and should be retried.

    Args:
        error: Exception to check

    Returns:
        True if error is retryable (transient)
    """
    if isinstance(error, ProviderError):
        return error.kind is ProviderErrorKind.TRANSIENT
    return False


def extract_error_code(error: Exception) -> ErrorCode:
    """
    Extract appropriate ErrorCode from an exception.

    Args:
        error: Exception to categorize

    Returns:
        Appropriate ErrorCode for the exception
    """
    if isinstance(error, ProviderTransientError):
        if error.http_status == 429:
            return ErrorCode.RATE_LIMITED
        return ErrorCode.PROVIDER_UNAVAILABLE

    if isinstance(error, ProviderError):
        return ErrorCode.PROVIDER_ERROR

    if isinstance(error, TimeoutError):
        return ErrorCode.PROVIDER_TIMEOUT

    if isinstance(error, DimensionMismatchError):
        return ErrorCode.DIMENSION_MISMATCH

    if isinstance(error, NotFoundError):
        return ErrorCode.NOT_FOUND

    if isinstance(error, CacheError):
        return ErrorCode.CACHE_FAILURE

    if isinstance(error, ConfigurationError):
        return ErrorCode.CONFIGURATION_ERROR

    return ErrorCode.INTERNAL_ERROR

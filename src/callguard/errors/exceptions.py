"""
Exception types and error classification for callguard.

Provides:
- ErrorCategory enum for retry decisions
- Typed exception hierarchy for outbound call failures
- Error classification utilities (the default retryability predicate)
"""

import builtins
import errno
import re
import socket
from enum import Enum
from typing import Any, Optional

# errno values raised as plain OSError when the network path is down
NETWORK_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, name, None)
        for name in (
            "ENETUNREACH",
            "EHOSTUNREACH",
            "EHOSTDOWN",
            "ENETDOWN",
            "ENETRESET",
            "ECONNABORTED",
            "ECONNRESET",
            "ECONNREFUSED",
            "ETIMEDOUT",
            "EPIPE",
        )
    )
    if code is not None
)

_THROTTLED_STATUS = re.compile(r"\b429\b")
_GATEWAY_STATUS = re.compile(r"\b50[234]\b")
_UNAVAILABLE_STATUS = re.compile(r"\b503\b")


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures worth retrying with backoff
                   (e.g., network failures, timeouts, 429/5xx responses)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., 4xx other than 429, validation errors)
        CIRCUIT_OPEN: Circuit breaker rejected the call without attempting it
        RETRY_EXHAUSTED: Every permitted attempt failed
        CONFIGURATION: Invalid policy or breaker settings
        UNKNOWN: Unclassified errors, not retried by default
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    RETRY_EXHAUSTED = "retry_exhausted"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ResilienceError(Exception):
    """
    Base exception for all callguard errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error should trigger a retry."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transient Errors
# =============================================================================


class TransientError(ResilienceError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class NetworkError(TransientError):
    """Network connection failed (DNS, refused, reset)."""


class RequestTimeoutError(TransientError):
    """Operation timed out."""


class ThrottlingError(TransientError):
    """Rate limited (429)."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after


class ServiceUnavailableError(TransientError):
    """Service temporarily unavailable (503)."""


# =============================================================================
# Permanent Errors
# =============================================================================


class PermanentError(ResilienceError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class NotFoundError(PermanentError):
    """Resource not found (404)."""


class ValidationError(PermanentError):
    """Request or response failed validation."""


class HttpStatusError(ResilienceError):
    """
    HTTP failure carrying the response status.

    The category is derived from the status so a single exception type can
    represent both retryable (429, 5xx) and terminal (other 4xx) responses.
    """

    def __init__(
        self,
        status_code: int,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.status_code = status_code
        ctx = {"http_status": status_code}
        ctx.update(context or {})
        super().__init__(message or f"HTTP {status_code}", cause, ctx)

    @property
    def category(self) -> ErrorCategory:  # type: ignore[override]
        return classify_http_status(self.status_code)


class ConfigurationError(ResilienceError, ValueError):
    """Invalid policy or breaker configuration."""

    category = ErrorCategory.CONFIGURATION


# =============================================================================
# Resilience Outcome Errors
# =============================================================================


class CircuitOpenError(ResilienceError):
    """Circuit breaker is open, rejecting calls without invoking them."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(
        self,
        circuit_name: str,
        retry_after: Optional[float] = None,
        cause: Optional[BaseException] = None,
    ):
        message = f"Circuit '{circuit_name}' is open"
        if retry_after is not None:
            message = f"{message} (retry after {retry_after:.1f}s)"
        super().__init__(
            message,
            cause,
            {"circuit_name": circuit_name, "retry_after": retry_after},
        )
        self.circuit_name = circuit_name
        self.retry_after = retry_after


class RetryExhaustedError(ResilienceError):
    """
    All retry attempts were consumed without success.

    Attributes:
        last_error: Error raised by the final attempt
        attempts: Number of attempts made
        history: Per-attempt records, when the executor supplied them
    """

    category = ErrorCategory.RETRY_EXHAUSTED

    def __init__(
        self,
        last_error: BaseException,
        attempts: int,
        history: Optional[list] = None,
    ):
        super().__init__(
            f"Retry exhausted after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}",
            cause=last_error,
            context={"attempts": attempts},
        )
        self.last_error = last_error
        self.attempts = attempts
        self.history = history or []

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """
    Classify HTTP status code into error category.

    Args:
        status_code: HTTP response status

    Returns:
        Appropriate ErrorCategory
    """
    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT  # Client errors, won't fix with retry

    if 500 <= status_code < 600:
        return ErrorCategory.TRANSIENT  # Server errors, may recover

    return ErrorCategory.UNKNOWN


def _extract_status_code(exc: BaseException) -> Optional[int]:
    """Find an HTTP status on the exception or its attached response."""
    for holder in (exc, getattr(exc, "response", None)):
        if holder is None:
            continue
        for attr in ("status_code", "status"):
            value: Any = getattr(holder, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def classify_exception(exc: BaseException) -> ErrorCategory:
    """
    Classify an exception into error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    # Already classified
    if isinstance(exc, ResilienceError):
        return exc.category

    # Builtin network failures
    if isinstance(
        exc,
        (builtins.ConnectionError, builtins.TimeoutError, socket.gaierror),
    ):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, OSError) and exc.errno in NETWORK_ERRNOS:
        return ErrorCategory.TRANSIENT

    # HTTP client errors expose the response status
    status_code = _extract_status_code(exc)
    if status_code is not None:
        return classify_http_status(status_code)

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "no route to host",
        "network unreachable",
        "network is unreachable",
        "host is down",
        "network is down",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timed out" in exc_str:
        return ErrorCategory.TRANSIENT

    if _THROTTLED_STATUS.search(exc_str) or "too many requests" in exc_str:
        return ErrorCategory.TRANSIENT

    if _GATEWAY_STATUS.search(exc_str):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def is_transient_error(exc: BaseException) -> bool:
    """Whether the exception is classified TRANSIENT."""
    return classify_exception(exc) == ErrorCategory.TRANSIENT


def is_retryable_error(exc: BaseException) -> bool:
    """
    Default retryability predicate.

    Network errors, timeouts, 5xx and 429 are retryable. Everything else,
    including CircuitOpenError and RetryExhaustedError, is not.
    """
    return is_transient_error(exc)


def wrap_exception(
    exc: BaseException,
    context: Optional[dict] = None,
) -> ResilienceError:
    """
    Wrap a generic exception in the matching ResilienceError subclass.

    Args:
        exc: Exception to wrap
        context: Additional context to include

    Returns:
        ResilienceError subclass instance (the same object if already typed)
    """
    if isinstance(exc, ResilienceError):
        if context:
            exc.context.update(context)
        return exc

    status_code = _extract_status_code(exc)
    if status_code is not None:
        return HttpStatusError(status_code, str(exc), cause=exc, context=context)

    category = classify_exception(exc)
    exc_str = str(exc).lower()

    if category == ErrorCategory.TRANSIENT:
        if isinstance(exc, builtins.TimeoutError) or "timeout" in exc_str:
            return RequestTimeoutError(str(exc), cause=exc, context=context)
        if _THROTTLED_STATUS.search(exc_str) or "too many requests" in exc_str:
            return ThrottlingError(str(exc), cause=exc, context=context)
        if _UNAVAILABLE_STATUS.search(exc_str):
            return ServiceUnavailableError(str(exc), cause=exc, context=context)
        return NetworkError(str(exc), cause=exc, context=context)

    return ResilienceError(str(exc), cause=exc, context=context)

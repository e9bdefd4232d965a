"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- ResilienceError hierarchy for typed exceptions
- Classification utilities, including the default retry predicate
"""

from callguard.errors.exceptions import (
    # Enums
    ErrorCategory,
    # Base classes
    ResilienceError,
    TransientError,
    PermanentError,
    # Transient errors
    NetworkError,
    RequestTimeoutError,
    ThrottlingError,
    ServiceUnavailableError,
    # Permanent errors
    NotFoundError,
    ValidationError,
    HttpStatusError,
    ConfigurationError,
    # Resilience outcomes
    CircuitOpenError,
    RetryExhaustedError,
    # Classification utilities
    classify_http_status,
    classify_exception,
    is_transient_error,
    is_retryable_error,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "ResilienceError",
    "TransientError",
    "PermanentError",
    # Transient errors
    "NetworkError",
    "RequestTimeoutError",
    "ThrottlingError",
    "ServiceUnavailableError",
    # Permanent errors
    "NotFoundError",
    "ValidationError",
    "HttpStatusError",
    "ConfigurationError",
    # Resilience outcomes
    "CircuitOpenError",
    "RetryExhaustedError",
    # Classification utilities
    "classify_http_status",
    "classify_exception",
    "is_transient_error",
    "is_retryable_error",
    "wrap_exception",
]

"""
callguard: retry and circuit breaker wrappers for outbound calls.

    from callguard import CircuitBreaker, RetryPolicy, retry_inside_breaker

    billing = CircuitBreaker("billing-api")
    invoice = retry_inside_breaker(billing, lambda: client.get("/invoices/42"),
                                   RetryPolicy(max_attempts=3, base_delay=0.2))
"""

from callguard.errors import (
    CircuitOpenError,
    ConfigurationError,
    ErrorCategory,
    ResilienceError,
    RetryExhaustedError,
    is_retryable_error,
)
from callguard.resilience import (
    DEFAULT_RETRY_POLICY,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    RetryExecutor,
    RetryPolicy,
    breaker_inside_retry,
    circuit_protected,
    execute_with_retry,
    execute_with_retry_async,
    retry_inside_breaker,
    with_retry,
)

__version__ = "0.1.0"

__all__ = [
    "CircuitOpenError",
    "ConfigurationError",
    "ErrorCategory",
    "ResilienceError",
    "RetryExhaustedError",
    "is_retryable_error",
    "DEFAULT_RETRY_POLICY",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "RetryExecutor",
    "RetryPolicy",
    "breaker_inside_retry",
    "circuit_protected",
    "execute_with_retry",
    "execute_with_retry_async",
    "retry_inside_breaker",
    "with_retry",
]

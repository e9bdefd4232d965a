"""
Resilience patterns module.

Provides fault tolerance primitives for outbound calls:
    - RetryExecutor: exponential backoff with bounded jitter
    - CircuitBreaker: closed/open/half-open state machine
    - Compositions of the two
"""

from callguard.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitStats,
    circuit_protected,
)
from callguard.resilience.clock import Clock, ManualClock, SystemClock
from callguard.resilience.compose import (
    breaker_inside_retry,
    breaker_inside_retry_async,
    retry_inside_breaker,
    retry_inside_breaker_async,
)
from callguard.resilience.events import BreakerTransitionEvent, RetryAttemptEvent
from callguard.resilience.retry import (
    DEFAULT_RETRY_POLICY,
    Attempt,
    RetryExecutor,
    RetryPolicy,
    execute_with_retry,
    execute_with_retry_async,
    with_retry,
)
from callguard.resilience.types import CircuitState

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitStats",
    "CircuitState",
    "circuit_protected",
    "Clock",
    "ManualClock",
    "SystemClock",
    "breaker_inside_retry",
    "breaker_inside_retry_async",
    "retry_inside_breaker",
    "retry_inside_breaker_async",
    "BreakerTransitionEvent",
    "RetryAttemptEvent",
    "DEFAULT_RETRY_POLICY",
    "Attempt",
    "RetryExecutor",
    "RetryPolicy",
    "execute_with_retry",
    "execute_with_retry_async",
    "with_retry",
]

"""
Explicit compositions of retry and circuit breaker.

Pick one deliberately:

retry_inside_breaker
    The breaker sees one logical outcome per call. Transient blips that a
    retry absorbs never reach the failure count, but an exhausted retry
    sequence counts as a single breaker failure.

breaker_inside_retry
    Every physical attempt passes through the breaker, so the breaker can
    open mid-sequence. CircuitOpenError is never retried: retrying against
    an open breaker defeats its purpose.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from callguard.errors import CircuitOpenError
from callguard.resilience.circuit_breaker import CircuitBreaker
from callguard.resilience.retry import (
    DEFAULT_RETRY_POLICY,
    RetryExecutor,
    RetryPolicy,
)

T = TypeVar("T")


def _without_circuit_open(policy: RetryPolicy) -> RetryPolicy:
    """Copy of policy whose predicate always rejects CircuitOpenError."""
    inner = policy.is_retryable

    def is_retryable(exc: BaseException) -> bool:
        if isinstance(exc, CircuitOpenError):
            return False
        return inner(exc)

    return RetryPolicy(
        max_attempts=policy.max_attempts,
        base_delay=policy.base_delay,
        max_delay=policy.max_delay,
        is_retryable=is_retryable,
    )


def retry_inside_breaker(
    breaker: CircuitBreaker,
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    **executor_kwargs: Any,
) -> T:
    """breaker.call(lambda: retry(operation))"""
    executor = RetryExecutor(policy or DEFAULT_RETRY_POLICY, **executor_kwargs)
    return breaker.call(lambda: executor.execute(operation))


def breaker_inside_retry(
    breaker: CircuitBreaker,
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    **executor_kwargs: Any,
) -> T:
    """retry(lambda: breaker.call(operation)), never retrying CircuitOpenError."""
    executor = RetryExecutor(
        _without_circuit_open(policy or DEFAULT_RETRY_POLICY), **executor_kwargs
    )
    return executor.execute(lambda: breaker.call(operation))


async def retry_inside_breaker_async(
    breaker: CircuitBreaker,
    operation: Callable[[], Union[Awaitable[T], T]],
    policy: Optional[RetryPolicy] = None,
    **executor_kwargs: Any,
) -> T:
    executor = RetryExecutor(policy or DEFAULT_RETRY_POLICY, **executor_kwargs)
    return await breaker.call_async(lambda: executor.execute_async(operation))


async def breaker_inside_retry_async(
    breaker: CircuitBreaker,
    operation: Callable[[], Union[Awaitable[T], T]],
    policy: Optional[RetryPolicy] = None,
    **executor_kwargs: Any,
) -> T:
    executor = RetryExecutor(
        _without_circuit_open(policy or DEFAULT_RETRY_POLICY), **executor_kwargs
    )
    return await executor.execute_async(lambda: breaker.call_async(operation))

"""
Retry with exponential backoff and bounded full jitter.

Delay before attempt i+1 (after attempt i failed):

    min(max_delay, base_delay * 2**(i-1) * U[0.5, 1.0))

The jitter floor guarantees a minimum backoff while still spreading
callers that failed together.

Usage:
    policy = RetryPolicy(max_attempts=4, base_delay=0.2, max_delay=5.0)

    # Manual style
    result = execute_with_retry(lambda: client.get(url), policy)

    # Decorator style
    @with_retry(policy)
    async def fetch_profile(user_id):
        ...
"""

import functools
import inspect
import logging
import math
import random
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, TypeVar, Union

from callguard import metrics
from callguard.errors import (
    ConfigurationError,
    RetryExhaustedError,
    classify_exception,
    is_retryable_error,
)
from callguard.logging.utilities import log_exception, log_with_context
from callguard.resilience.clock import SYSTEM_CLOCK, Clock
from callguard.resilience.events import RetryAttemptEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_FLOOR = 0.5

# Largest float below 1.0; keeps the jittered delay strictly under the exponential
_JITTER_CEILING = math.nextafter(1.0, 0.0)

# Keeps 2**n representable as a float for absurd attempt counts
_MAX_EXPONENT = 1000


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration, typically built once per call-site."""

    # Total attempts including the first try
    max_attempts: int = 3

    # Initial backoff unit in seconds
    base_delay: float = 1.0

    # Upper clamp on computed backoff in seconds
    max_delay: float = 30.0

    # Decides whether an error is worth another attempt
    is_retryable: Callable[[BaseException], bool] = is_retryable_error

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise ConfigurationError(
                f"max_attempts must be an integer, got {self.max_attempts!r}"
            )
        if self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be >= 1, got {self.max_attempts}"
            )
        for name in ("base_delay", "max_delay"):
            value = getattr(self, name)
            if (
                isinstance(value, bool)
                or not isinstance(value, (int, float))
                or not math.isfinite(value)
            ):
                raise ConfigurationError(
                    f"{name} must be a finite number, got {value!r}"
                )
        if self.base_delay <= 0:
            raise ConfigurationError(f"base_delay must be > 0, got {self.base_delay}")
        if self.max_delay < self.base_delay:
            raise ConfigurationError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        if not callable(self.is_retryable):
            raise ConfigurationError("is_retryable must be callable")

    def compute_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Backoff to apply after the given attempt failed.

        Args:
            attempt: 1-based index of the attempt that failed
            rng: Random source (module-level random when omitted)

        Returns:
            Delay in seconds, never above max_delay
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        draw = (rng or random).random()
        jitter = min(JITTER_FLOOR + (1.0 - JITTER_FLOOR) * draw, _JITTER_CEILING)
        exponential = self.base_delay * (2.0 ** min(attempt - 1, _MAX_EXPONENT))
        return min(self.max_delay, exponential * jitter)


DEFAULT_RETRY_POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0)


@dataclass
class Attempt:
    """Outcome of a single try within a retry sequence."""

    index: int
    succeeded: bool
    error: Optional[BaseException] = None
    delay_before_next: Optional[float] = None


def _operation_name(operation: Callable[..., Any]) -> str:
    return getattr(operation, "__qualname__", None) or type(operation).__name__


class RetryExecutor:
    """
    Executes a zero-argument operation under a RetryPolicy.

    Stateless between calls, so one executor can be shared by concurrent
    callers. Attempts within one call are strictly sequential.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        on_retry: Optional[Callable[[RetryAttemptEvent], None]] = None,
        name: Optional[str] = None,
    ):
        self.policy = policy or DEFAULT_RETRY_POLICY
        self.clock = clock or SYSTEM_CLOCK
        self.rng = rng
        self.on_retry = on_retry
        self.name = name

    def execute(
        self,
        operation: Callable[[], T],
        cancel_event: Optional[threading.Event] = None,
    ) -> T:
        """
        Run operation until it succeeds or the policy says stop.

        Args:
            operation: Zero-argument callable
            cancel_event: Setting this during a backoff sleep abandons the
                sequence and re-raises the error that triggered the retry

        Returns:
            Result of the first successful attempt

        Raises:
            RetryExhaustedError: Final attempt failed with a retryable error
            Exception: First non-retryable error, unchanged
        """
        op_name = self.name or _operation_name(operation)
        history: List[Attempt] = []

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                result = operation()
            except Exception as exc:
                delay = self._schedule_retry(exc, attempt, history, op_name)
                if self.clock.sleep(delay, cancel_event):
                    log_with_context(
                        logger,
                        logging.INFO,
                        "Retry cancelled during backoff",
                        operation_name=op_name,
                        attempt=attempt,
                        max_attempts=self.policy.max_attempts,
                    )
                    raise
                continue

            self._record_success(attempt, history, op_name)
            return result

        raise RuntimeError("Retry loop exited without an outcome")  # pragma: no cover

    async def execute_async(
        self,
        operation: Callable[[], Union[Awaitable[T], T]],
    ) -> T:
        """
        Async variant of execute().

        The operation may return an awaitable or a plain value. Backoff
        suspends via the clock, so cancelling the surrounding task aborts the
        pending sleep and abandons the sequence.
        """
        op_name = self.name or _operation_name(operation)
        history: List[Attempt] = []

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                delay = self._schedule_retry(exc, attempt, history, op_name)
                await self.clock.sleep_async(delay)
                continue

            self._record_success(attempt, history, op_name)
            return result  # type: ignore[return-value]

        raise RuntimeError("Retry loop exited without an outcome")  # pragma: no cover

    def _schedule_retry(
        self,
        exc: Exception,
        attempt: int,
        history: List[Attempt],
        op_name: str,
    ) -> float:
        """Record a failed attempt; raise if terminal, else return the delay."""
        record = Attempt(index=attempt, succeeded=False, error=exc)
        history.append(record)

        if not self.policy.is_retryable(exc):
            log_with_context(
                logger,
                logging.DEBUG,
                "Non-retryable error, not retrying",
                operation_name=op_name,
                attempt=attempt,
                max_attempts=self.policy.max_attempts,
                error_type=type(exc).__name__,
                error_category=classify_exception(exc).value,
            )
            raise exc

        if attempt >= self.policy.max_attempts:
            metrics.record_retry_exhausted(op_name)
            log_exception(
                logger,
                exc,
                "Retry exhausted",
                level=logging.WARNING,
                include_traceback=False,
                operation_name=op_name,
                attempt=attempt,
                max_attempts=self.policy.max_attempts,
            )
            raise RetryExhaustedError(exc, attempt, history=history) from exc

        delay = self.policy.compute_delay(attempt, self.rng)
        record.delay_before_next = delay

        event = RetryAttemptEvent(
            attempt=attempt,
            max_attempts=self.policy.max_attempts,
            delay=delay,
            error=exc,
            operation=op_name,
        )
        self._emit(event)
        return delay

    def _emit(self, event: RetryAttemptEvent) -> None:
        fields = event.to_log_fields()
        log_with_context(logger, logging.WARNING, "Retrying after failure", **fields)
        metrics.record_retry(event.operation or "unnamed", fields["error_category"])

        if self.on_retry:
            try:
                self.on_retry(event)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Error in retry callback",
                    level=logging.WARNING,
                    include_traceback=False,
                    operation_name=event.operation,
                )

    def _record_success(self, attempt: int, history: List[Attempt], op_name: str) -> None:
        history.append(Attempt(index=attempt, succeeded=True))
        if attempt > 1:
            log_with_context(
                logger,
                logging.INFO,
                "Operation succeeded after retry",
                operation_name=op_name,
                attempt=attempt,
                max_attempts=self.policy.max_attempts,
            )


def execute_with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    **kwargs: Any,
) -> T:
    """
    Execute operation with retry.

    Args:
        operation: Zero-argument callable
        policy: Retry policy (DEFAULT_RETRY_POLICY when omitted)
        **kwargs: Forwarded to RetryExecutor (clock, rng, on_retry, name)
            and cancel_event to execute()
    """
    cancel_event = kwargs.pop("cancel_event", None)
    return RetryExecutor(policy, **kwargs).execute(operation, cancel_event=cancel_event)


async def execute_with_retry_async(
    operation: Callable[[], Union[Awaitable[T], T]],
    policy: Optional[RetryPolicy] = None,
    **kwargs: Any,
) -> T:
    """Async variant of execute_with_retry()."""
    return await RetryExecutor(policy, **kwargs).execute_async(operation)


def with_retry(
    policy: Optional[RetryPolicy] = None,
    **executor_kwargs: Any,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator to retry a function under a policy.

    Works for plain and coroutine functions.

    Usage:
        @with_retry(RetryPolicy(max_attempts=5, base_delay=0.5))
        def fetch_rates():
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        options = dict(executor_kwargs)
        options.setdefault("name", func.__qualname__)
        executor = RetryExecutor(policy, **options)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await executor.execute_async(lambda: func(*args, **kwargs))

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            return executor.execute(lambda: func(*args, **kwargs))

        return sync_wrapper

    return decorator

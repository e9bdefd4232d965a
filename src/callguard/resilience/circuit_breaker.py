"""
Circuit breaker pattern for resilience against cascading failures.

Protects against scenarios like:
- Upstream service outages
- Network partitions
- A dependency that keeps timing out under load

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Failing, calls rejected immediately (fast-fail)
- HALF_OPEN: Testing recovery, exactly one probe call allowed

Transitions:
- CLOSED -> OPEN after failure_threshold consecutive failures
- OPEN -> HALF_OPEN on the first call after reset_timeout has elapsed
  since the last recorded failure; that call becomes the probe
- HALF_OPEN -> CLOSED when the probe succeeds
- HALF_OPEN -> OPEN when the probe fails (restamps the failure time)

Usage:
    # One breaker per downstream dependency, injected where it's needed
    breaker = CircuitBreaker("billing-api", CircuitBreakerConfig(failure_threshold=5))
    result = breaker.call(lambda: client.get("/invoices"))

    # Decorator style
    @circuit_protected(breaker)
    def fetch_invoices():
        ...
"""

import functools
import inspect
import logging
import math
import threading
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from callguard import metrics
from callguard.errors import CircuitOpenError, ConfigurationError
from callguard.logging.utilities import log_exception, log_with_context
from callguard.resilience.clock import SYSTEM_CLOCK, Clock
from callguard.resilience.events import BreakerTransitionEvent
from callguard.resilience.types import CircuitState

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ALLOWED_TRANSITIONS = {
    (CircuitState.CLOSED, CircuitState.OPEN),
    (CircuitState.OPEN, CircuitState.HALF_OPEN),
    (CircuitState.HALF_OPEN, CircuitState.CLOSED),
    (CircuitState.HALF_OPEN, CircuitState.OPEN),
}


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Consecutive failures before opening circuit
    failure_threshold: int = 5

    # Seconds an open circuit waits after the last failure before probing
    reset_timeout: float = 30.0

    # Exceptions that propagate without counting as success or failure
    excluded_exceptions: Tuple[Type[BaseException], ...] = ()

    def __post_init__(self) -> None:
        if (
            isinstance(self.failure_threshold, bool)
            or not isinstance(self.failure_threshold, int)
            or self.failure_threshold < 1
        ):
            raise ConfigurationError(
                f"failure_threshold must be an integer >= 1, got {self.failure_threshold!r}"
            )
        if (
            isinstance(self.reset_timeout, bool)
            or not isinstance(self.reset_timeout, (int, float))
            or not math.isfinite(self.reset_timeout)
            or self.reset_timeout <= 0
        ):
            raise ConfigurationError(
                f"reset_timeout must be a finite number > 0, got {self.reset_timeout!r}"
            )
        self.excluded_exceptions = tuple(self.excluded_exceptions)


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    excluded_calls: int = 0
    state_changes: int = 0
    consecutive_failures: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    last_state_change_time: Optional[float] = None
    current_state: str = "closed"


class CircuitBreaker:
    """
    Circuit breaker with single-probe half-open admission.

    Thread-safe for concurrent access: every read and write of breaker
    state happens under one lock, and the wrapped operation runs outside it.
    Safe to share between asyncio tasks as well, since the lock is never
    held across an await.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Clock] = None,
        on_state_change: Optional[Callable[[BreakerTransitionEvent], None]] = None,
    ):
        if not name:
            raise ConfigurationError("Circuit breaker name must be non-empty")

        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.clock = clock or SYSTEM_CLOCK
        self.on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: Optional[float] = None
        self._probe_in_flight = False

        self._stats = CircuitStats()
        self._lock = threading.RLock()

        metrics.init_circuit_breaker(name)

    @property
    def state(self) -> CircuitState:
        """Current circuit state. Reading never triggers a transition."""
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    @property
    def last_failure_time(self) -> Optional[float]:
        """Clock reading of the most recent counted failure."""
        with self._lock:
            return self._last_failure_time

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self.state == CircuitState.HALF_OPEN

    @property
    def stats(self) -> CircuitStats:
        """Get copy of current statistics."""
        with self._lock:
            return CircuitStats(
                total_calls=self._stats.total_calls,
                successful_calls=self._stats.successful_calls,
                failed_calls=self._stats.failed_calls,
                rejected_calls=self._stats.rejected_calls,
                excluded_calls=self._stats.excluded_calls,
                state_changes=self._stats.state_changes,
                consecutive_failures=self._consecutive_failures,
                last_failure_time=self._stats.last_failure_time,
                last_success_time=self._stats.last_success_time,
                last_state_change_time=self._stats.last_state_change_time,
                current_state=self._state.value,
            )

    def retry_after(self) -> Optional[float]:
        """Seconds until an open circuit admits a probe, None if unknown."""
        with self._lock:
            return self._get_retry_after()

    # -------------------------------------------------------------------------
    # State machine (all underscore methods are called under lock)
    # -------------------------------------------------------------------------

    def _get_retry_after(self) -> Optional[float]:
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return None
        elapsed = self.clock.now() - self._last_failure_time
        return max(0.0, self.config.reset_timeout - elapsed)

    def _probe_eligible(self) -> bool:
        if self._last_failure_time is None:
            return True
        elapsed = self.clock.now() - self._last_failure_time
        return elapsed >= self.config.reset_timeout

    def _transition_to(self, new_state: CircuitState, forced: bool = False) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        if not forced and (old_state, new_state) not in _ALLOWED_TRANSITIONS:
            raise RuntimeError(
                f"Illegal circuit transition {old_state.value} -> {new_state.value}"
            )

        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change_time = self.clock.now()
        self._stats.current_state = new_state.value

        event = BreakerTransitionEvent(
            previous_state=old_state,
            new_state=new_state,
            consecutive_failures=self._consecutive_failures,
            breaker_name=self.name,
        )

        if new_state == CircuitState.OPEN:
            log_with_context(
                logger,
                logging.WARNING,
                "Circuit open",
                reset_timeout_seconds=self.config.reset_timeout,
                failure_threshold=self.config.failure_threshold,
                **event.to_log_fields(),
            )
        elif new_state == CircuitState.HALF_OPEN:
            log_with_context(logger, logging.INFO, "Circuit half-open", **event.to_log_fields())
        else:
            log_with_context(logger, logging.INFO, "Circuit closed", **event.to_log_fields())

        metrics.update_circuit_breaker_state(self.name, old_state.value, new_state.value)

        if self.on_state_change:
            try:
                self.on_state_change(event)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Error in circuit state change callback",
                    circuit_name=self.name,
                    level=logging.WARNING,
                    include_traceback=False,
                )

    def _acquire_permission(self) -> bool:
        """
        Admit or reject a call.

        Returns:
            True when the caller is the half-open probe, False for a normal
            closed-state call

        Raises:
            CircuitOpenError: Call rejected
        """
        self._stats.total_calls += 1

        if self._state == CircuitState.CLOSED:
            return False

        if self._state == CircuitState.OPEN and self._probe_eligible():
            log_with_context(
                logger,
                logging.DEBUG,
                "Circuit breaker reset timeout elapsed, admitting probe",
                circuit_name=self.name,
                reset_timeout_seconds=self.config.reset_timeout,
                consecutive_failures=self._consecutive_failures,
            )
            self._transition_to(CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            return True

        self._stats.rejected_calls += 1
        metrics.record_circuit_breaker_rejection(self.name)
        retry_after = self._get_retry_after()
        log_with_context(
            logger,
            logging.DEBUG,
            "Circuit breaker rejected call",
            circuit_name=self.name,
            circuit_state=self._state.value,
            retry_after_seconds=retry_after,
        )
        raise CircuitOpenError(self.name, retry_after)

    def _record_success(self, is_probe: bool) -> None:
        now = self.clock.now()
        self._stats.successful_calls += 1
        self._stats.last_success_time = now

        if self._state == CircuitState.CLOSED:
            # Consecutive failure tracking
            self._consecutive_failures = 0
        elif self._state == CircuitState.HALF_OPEN and is_probe:
            self._probe_in_flight = False
            self._consecutive_failures = 0
            self._transition_to(CircuitState.CLOSED)
        # Late results from calls admitted before the circuit opened are ignored

    def _record_failure(self, exc: BaseException, is_probe: bool) -> None:
        if isinstance(exc, self.config.excluded_exceptions):
            self._stats.excluded_calls += 1
            self._release_probe(is_probe)
            log_with_context(
                logger,
                logging.DEBUG,
                "Circuit breaker failure not counted (excluded)",
                circuit_name=self.name,
                circuit_state=self._state.value,
                error_type=type(exc).__name__,
            )
            return

        now = self.clock.now()
        self._stats.failed_calls += 1
        self._stats.last_failure_time = now

        if self._state == CircuitState.CLOSED:
            self._consecutive_failures += 1
            self._last_failure_time = now
            metrics.record_circuit_breaker_failure(self.name)
            log_with_context(
                logger,
                logging.DEBUG,
                "Circuit breaker failure recorded",
                circuit_name=self.name,
                circuit_state=self._state.value,
                error_type=type(exc).__name__,
                consecutive_failures=self._consecutive_failures,
                failure_threshold=self.config.failure_threshold,
            )
            # Threshold check is atomic with the increment
            if self._consecutive_failures >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)
        elif self._state == CircuitState.HALF_OPEN and is_probe:
            # A single failed probe reopens the circuit
            self._probe_in_flight = False
            self._last_failure_time = now
            metrics.record_circuit_breaker_failure(self.name)
            log_with_context(
                logger,
                logging.DEBUG,
                "Circuit breaker probe failed",
                circuit_name=self.name,
                error_type=type(exc).__name__,
            )
            self._transition_to(CircuitState.OPEN)
        else:
            log_with_context(
                logger,
                logging.DEBUG,
                "Circuit breaker ignored late failure",
                circuit_name=self.name,
                circuit_state=self._state.value,
                error_type=type(exc).__name__,
            )

    def _release_probe(self, is_probe: bool) -> None:
        if is_probe and self._state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def call(self, operation: Callable[[], T]) -> T:
        """
        Execute operation through circuit breaker.

        Args:
            operation: Zero-argument callable

        Returns:
            Result of operation

        Raises:
            CircuitOpenError: If circuit is open (operation not invoked)
            Exception: Any exception from operation (recorded first)
        """
        with self._lock:
            is_probe = self._acquire_permission()

        # Execute outside lock
        try:
            result = operation()
        except Exception as e:
            with self._lock:
                self._record_failure(e, is_probe)
            raise
        except BaseException:
            with self._lock:
                self._release_probe(is_probe)
            raise

        with self._lock:
            self._record_success(is_probe)
        return result

    execute = call

    async def call_async(
        self,
        operation: Callable[[], Union[Awaitable[T], T]],
    ) -> T:
        """
        Async variant of call().

        The operation may return an awaitable or a plain value. A cancelled
        probe frees the probe slot without counting as success or failure.
        """
        with self._lock:
            is_probe = self._acquire_permission()

        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            with self._lock:
                self._record_failure(e, is_probe)
            raise
        except BaseException:
            with self._lock:
                self._release_probe(is_probe)
            raise

        with self._lock:
            self._record_success(is_probe)
        return result  # type: ignore[return-value]

    execute_async = call_async

    def record_success(self) -> None:
        """Manually record a success (for callers that bracket work themselves)."""
        with self._lock:
            self._stats.total_calls += 1
            self._record_success(is_probe=self._state == CircuitState.HALF_OPEN)

    def record_failure(self, exc: BaseException) -> None:
        """Manually record a failure (for callers that bracket work themselves)."""
        with self._lock:
            self._stats.total_calls += 1
            self._record_failure(exc, is_probe=self._state == CircuitState.HALF_OPEN)

    def reset(self) -> None:
        """Administrative override: force the circuit closed and clear counters."""
        with self._lock:
            self._consecutive_failures = 0
            self._last_failure_time = None
            self._probe_in_flight = False
            self._transition_to(CircuitState.CLOSED, forced=True)
            log_with_context(
                logger,
                logging.INFO,
                "Circuit manually reset",
                circuit_name=self.name,
            )

    def get_diagnostics(self) -> dict:
        """Get diagnostic info for health checks."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "probe_in_flight": self._probe_in_flight,
                "retry_after": self._get_retry_after(),
                "config": {
                    "failure_threshold": self.config.failure_threshold,
                    "reset_timeout": self.config.reset_timeout,
                },
                "stats": {
                    "total_calls": self._stats.total_calls,
                    "successful_calls": self._stats.successful_calls,
                    "failed_calls": self._stats.failed_calls,
                    "rejected_calls": self._stats.rejected_calls,
                    "excluded_calls": self._stats.excluded_calls,
                    "state_changes": self._stats.state_changes,
                },
            }


# =============================================================================
# Circuit Breaker Registry
# =============================================================================


class CircuitBreakerRegistry:
    """
    Owns one breaker per logical dependency.

    Create one registry at application start-up and pass it to the
    components that need breakers; there is no process-wide instance.
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Clock] = None,
        on_state_change: Optional[Callable[[BreakerTransitionEvent], None]] = None,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self.clock = clock
        self.on_state_change = on_state_change
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ) -> CircuitBreaker:
        """
        Get or create a named circuit breaker.

        Args:
            name: Unique name for the circuit breaker
            config: Configuration (only used on first creation)

        Returns:
            CircuitBreaker instance
        """
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name,
                    config or self.default_config,
                    clock=self.clock,
                    on_state_change=self.on_state_change,
                )
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Created circuit breaker",
                    circuit_name=name,
                )
            return self._breakers[name]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._breakers

    def all(self) -> List[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())

    def diagnostics(self) -> List[dict]:
        """Diagnostics for every registered breaker (health endpoints)."""
        return [breaker.get_diagnostics() for breaker in self.all()]

    def reset_all(self) -> None:
        for breaker in self.all():
            breaker.reset()


def circuit_protected(
    breaker: CircuitBreaker,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator to protect a function with a circuit breaker.

    Args:
        breaker: Breaker guarding the dependency the function calls

    Returns:
        Decorated function that executes through the breaker

    Raises:
        CircuitOpenError: If circuit is open
        Exception: Any exception from the wrapped function

    Usage:
        billing = registry.get("billing-api")

        @circuit_protected(billing)
        def fetch_invoice(invoice_id: str):
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await breaker.call_async(lambda: func(*args, **kwargs))

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            return breaker.call(lambda: func(*args, **kwargs))

        return sync_wrapper

    return decorator

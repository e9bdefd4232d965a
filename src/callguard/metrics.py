"""
Prometheus metrics for retry and circuit breaker monitoring.

Provides instrumentation for:
- Retry attempts and exhausted retry sequences
- Circuit breaker state, transitions, counted failures and rejections
"""

from prometheus_client import Counter, Gauge

# Retry metrics
retry_attempts_total = Counter(
    "callguard_retry_attempts_total",
    "Total number of retries scheduled after a retryable failure",
    ["operation", "error_category"],
)

retry_exhausted_total = Counter(
    "callguard_retry_exhausted_total",
    "Total number of retry sequences that ran out of attempts",
    ["operation"],
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "callguard_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half-open)",
    ["breaker"],
)

circuit_breaker_transitions_total = Counter(
    "callguard_circuit_breaker_transitions_total",
    "Total number of circuit breaker state transitions",
    ["breaker", "from_state", "to_state"],
)

circuit_breaker_failures_total = Counter(
    "callguard_circuit_breaker_failures_total",
    "Total number of failures counted by circuit breakers",
    ["breaker"],
)

circuit_breaker_rejections_total = Counter(
    "callguard_circuit_breaker_rejections_total",
    "Total number of calls rejected without invoking the operation",
    ["breaker"],
)

_STATE_VALUES = {"closed": 0, "open": 1, "half_open": 2}


def record_retry(operation: str, error_category: str) -> None:
    """Count a scheduled retry."""
    retry_attempts_total.labels(
        operation=operation, error_category=error_category
    ).inc()


def record_retry_exhausted(operation: str) -> None:
    """Count a retry sequence that consumed every attempt."""
    retry_exhausted_total.labels(operation=operation).inc()


def update_circuit_breaker_state(breaker: str, from_state: str, to_state: str) -> None:
    """Set the state gauge and count the transition."""
    circuit_breaker_state.labels(breaker=breaker).set(_STATE_VALUES[to_state])
    circuit_breaker_transitions_total.labels(
        breaker=breaker, from_state=from_state, to_state=to_state
    ).inc()


def record_circuit_breaker_failure(breaker: str) -> None:
    """Count a failure recorded against a breaker."""
    circuit_breaker_failures_total.labels(breaker=breaker).inc()


def record_circuit_breaker_rejection(breaker: str) -> None:
    """Count a fast-failed call."""
    circuit_breaker_rejections_total.labels(breaker=breaker).inc()


def init_circuit_breaker(breaker: str) -> None:
    """Publish the initial CLOSED state for a new breaker."""
    circuit_breaker_state.labels(breaker=breaker).set(0)

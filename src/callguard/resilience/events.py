"""
Structured observability events for retries and breaker transitions.

Events are emitted as data, never as formatted strings, so a collaborating
logger can attach correlation IDs and redact sensitive fields.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from callguard.errors import classify_exception
from callguard.resilience.types import CircuitState
from callguard.security import sanitize_error_message


def _error_fields(error: BaseException) -> Dict[str, Any]:
    return {
        "error_type": type(error).__name__,
        "error_category": classify_exception(error).value,
        "error_message": sanitize_error_message(str(error)),
    }


class RetryAttemptEvent(BaseModel):
    """Emitted once per scheduled retry, before the backoff sleep.

    Attributes:
        attempt: 1-based index of the attempt that just failed
        max_attempts: Attempt ceiling from the policy
        delay: Seconds of backoff before the next attempt
        error: Exception that triggered the retry
        operation: Name of the retried operation, when known
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    attempt: int = Field(..., ge=1)
    max_attempts: int = Field(..., ge=1)
    delay: float = Field(..., ge=0)
    error: BaseException
    operation: Optional[str] = None

    def to_log_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "delay_seconds": round(self.delay, 4),
            "operation_name": self.operation,
        }
        fields.update(_error_fields(self.error))
        return fields


class BreakerTransitionEvent(BaseModel):
    """Emitted on every circuit breaker state change.

    Attributes:
        previous_state: State before the transition
        new_state: State after the transition
        consecutive_failures: Failure count at time of transition
        breaker_name: Name of the breaker that transitioned
    """

    model_config = ConfigDict(frozen=True)

    previous_state: CircuitState
    new_state: CircuitState
    consecutive_failures: int = Field(..., ge=0)
    breaker_name: str

    def to_log_fields(self) -> Dict[str, Any]:
        return {
            "circuit_name": self.breaker_name,
            "previous_state": self.previous_state.value,
            "new_state": self.new_state.value,
            "circuit_state": self.new_state.value,
            "consecutive_failures": self.consecutive_failures,
        }

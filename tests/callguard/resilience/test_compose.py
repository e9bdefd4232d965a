"""
Tests for the two retry/breaker compositions.

retry_inside_breaker: the breaker sees one logical outcome per call.
breaker_inside_retry: each physical attempt passes through the breaker.
"""

from unittest.mock import MagicMock

import pytest

from callguard.errors import CircuitOpenError, RetryExhaustedError
from callguard.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from callguard.resilience.compose import (
    _without_circuit_open,
    breaker_inside_retry,
    breaker_inside_retry_async,
    retry_inside_breaker,
    retry_inside_breaker_async,
)
from callguard.resilience.retry import RetryPolicy
from callguard.resilience.types import CircuitState


@pytest.fixture
def on_state_change():
    return MagicMock()


@pytest.fixture
def breaker_factory(clock, on_state_change):
    def factory(failure_threshold=2, reset_timeout=30.0):
        return CircuitBreaker(
            "inventory-api",
            CircuitBreakerConfig(
                failure_threshold=failure_threshold, reset_timeout=reset_timeout
            ),
            clock=clock,
            on_state_change=on_state_change,
        )

    return factory


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0)


class TestRetryInsideBreaker:
    """breaker.call(lambda: retry(operation))"""

    def test_absorbed_blips_never_reach_breaker(
        self, breaker_factory, policy, clock, rng, scripted, on_state_change
    ):
        """Test transient failures recovered by retry leave the count at zero."""
        breaker = breaker_factory(failure_threshold=1)
        op = scripted(ConnectionError("blip"), ConnectionError("blip"), "stock")

        result = retry_inside_breaker(breaker, op, policy, clock=clock, rng=rng)

        assert result == "stock"
        assert op.calls == 3
        assert breaker.is_closed
        assert breaker.consecutive_failures == 0
        on_state_change.assert_not_called()

    def test_exhausted_sequence_counts_once(self, breaker_factory, policy, clock, rng, scripted):
        """Test one exhausted retry sequence is a single breaker failure."""
        breaker = breaker_factory(failure_threshold=2)
        op = scripted(ConnectionError("down"))

        with pytest.raises(RetryExhaustedError):
            retry_inside_breaker(breaker, op, policy, clock=clock, rng=rng)

        assert op.calls == 3
        assert breaker.consecutive_failures == 1
        assert breaker.is_closed

        with pytest.raises(RetryExhaustedError):
            retry_inside_breaker(breaker, op, policy, clock=clock, rng=rng)

        assert op.calls == 6
        assert breaker.is_open

    def test_open_breaker_skips_retry_sequence(
        self, breaker_factory, policy, clock, rng, scripted
    ):
        """Test an open breaker rejects before any attempt or backoff."""
        breaker = breaker_factory(failure_threshold=1)
        breaker.record_failure(ConnectionError("down"))
        op = scripted("never")

        with pytest.raises(CircuitOpenError):
            retry_inside_breaker(breaker, op, policy, clock=clock, rng=rng)

        assert op.calls == 0
        assert clock.sleeps == []

    def test_non_retryable_error_counts_against_breaker(
        self, breaker_factory, policy, clock, scripted
    ):
        """Test a permanent error skips retry but still counts as a failure."""
        breaker = breaker_factory(failure_threshold=1)
        op = scripted(ValueError("bad request"))

        with pytest.raises(ValueError):
            retry_inside_breaker(breaker, op, policy, clock=clock)

        assert op.calls == 1
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_async(self, breaker_factory, policy, clock, rng):
        """Test the async variant awaits retries inside one breaker call."""
        breaker = breaker_factory(failure_threshold=1)
        calls = []

        async def fetch():
            calls.append(1)
            if len(calls) < 2:
                raise TimeoutError("timed out")
            return "ok"

        result = await retry_inside_breaker_async(breaker, fetch, policy, clock=clock, rng=rng)

        assert result == "ok"
        assert len(calls) == 2
        assert breaker.is_closed


class TestBreakerInsideRetry:
    """retry(lambda: breaker.call(operation))"""

    def test_breaker_opens_mid_sequence(
        self, breaker_factory, clock, rng, scripted, on_state_change
    ):
        """Test the breaker opening stops the retry sequence with CircuitOpenError."""
        breaker = breaker_factory(failure_threshold=2)
        op = scripted(ConnectionError("down"))
        policy = RetryPolicy(max_attempts=5, base_delay=0.1, max_delay=1.0)

        with pytest.raises(CircuitOpenError) as exc_info:
            breaker_inside_retry(breaker, op, policy, clock=clock, rng=rng)

        assert exc_info.value.circuit_name == "inventory-api"
        assert op.calls == 2
        assert len(clock.sleeps) == 2
        assert breaker.is_open

        on_state_change.assert_called_once()
        event = on_state_change.call_args[0][0]
        assert event.new_state == CircuitState.OPEN
        assert event.consecutive_failures == 2

    def test_circuit_open_never_retried_with_permissive_predicate(
        self, breaker_factory, clock, scripted
    ):
        """Test even a retry-everything predicate does not retry CircuitOpenError."""
        breaker = breaker_factory(failure_threshold=1)
        breaker.record_failure(ConnectionError("down"))
        op = scripted("never")
        policy = RetryPolicy(max_attempts=5, base_delay=0.1, is_retryable=lambda exc: True)

        with pytest.raises(CircuitOpenError):
            breaker_inside_retry(breaker, op, policy, clock=clock)

        assert op.calls == 0
        assert clock.sleeps == []

    def test_every_attempt_counted(self, breaker_factory, policy, clock, rng, scripted):
        """Test each physical failure is seen by the breaker until success resets it."""
        breaker = breaker_factory(failure_threshold=5)
        failures_seen = []
        op = scripted(
            ConnectionError("a"),
            ConnectionError("b"),
            "ok",
            on_call=lambda: failures_seen.append(breaker.consecutive_failures),
        )

        assert breaker_inside_retry(breaker, op, policy, clock=clock, rng=rng) == "ok"

        assert failures_seen == [0, 1, 2]
        assert breaker.consecutive_failures == 0

    def test_exhausted_when_breaker_stays_closed(
        self, breaker_factory, policy, clock, rng, scripted
    ):
        """Test exhaustion surfaces normally when the threshold is never reached."""
        breaker = breaker_factory(failure_threshold=10)
        op = scripted(ConnectionError("down"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            breaker_inside_retry(breaker, op, policy, clock=clock, rng=rng)

        assert exc_info.value.attempts == 3
        assert breaker.consecutive_failures == 3

    @pytest.mark.asyncio
    async def test_async(self, breaker_factory, clock, rng):
        """Test the async variant routes every attempt through the breaker."""
        breaker = breaker_factory(failure_threshold=1)
        calls = []

        async def fetch():
            calls.append(1)
            raise ConnectionError("down")

        policy = RetryPolicy(max_attempts=4, base_delay=0.1)
        with pytest.raises(CircuitOpenError):
            await breaker_inside_retry_async(breaker, fetch, policy, clock=clock, rng=rng)

        assert len(calls) == 1
        assert breaker.is_open


class TestWithoutCircuitOpen:
    """Tests for the predicate wrapper used by breaker_inside_retry."""

    def test_preserves_policy_settings(self, policy):
        """Test delays and attempts are copied unchanged."""
        wrapped = _without_circuit_open(policy)
        assert wrapped.max_attempts == policy.max_attempts
        assert wrapped.base_delay == policy.base_delay
        assert wrapped.max_delay == policy.max_delay

    def test_delegates_other_errors(self):
        """Test non-breaker errors still go through the original predicate."""
        inner = MagicMock(return_value=True)
        wrapped = _without_circuit_open(RetryPolicy(is_retryable=inner))

        assert wrapped.is_retryable(KeyError("x")) is True
        assert wrapped.is_retryable(CircuitOpenError("svc")) is False
        inner.assert_called_once()

"""Tests for SystemClock and ManualClock."""

import asyncio
import threading

import pytest

from callguard.resilience.clock import ManualClock, SystemClock


class TestManualClock:
    """Tests for the deterministic test clock."""

    def test_advance(self):
        """Test time only moves when advanced."""
        clock = ManualClock(start=5.0)
        assert clock.now() == 5.0

        clock.advance(2.5)
        assert clock.now() == 7.5

    def test_sleep_records_and_advances(self):
        """Test sleeping advances time and records the delay."""
        clock = ManualClock()

        assert clock.sleep(0.25) is False
        assert clock.sleep(0.5) is False

        assert clock.sleeps == [0.25, 0.5]
        assert clock.now() == 0.75

    def test_sleep_cancelled(self):
        """Test a set event cancels the sleep without advancing time."""
        clock = ManualClock()
        event = threading.Event()
        event.set()

        assert clock.sleep(1.0, event) is True
        assert clock.sleeps == []
        assert clock.now() == 0.0

    @pytest.mark.asyncio
    async def test_sleep_async(self):
        """Test async sleep records and advances."""
        clock = ManualClock()
        await clock.sleep_async(1.5)

        assert clock.sleeps == [1.5]
        assert clock.now() == 1.5


class TestSystemClock:
    """Tests for the wall clock."""

    def test_now_is_monotonic(self):
        """Test successive readings never go backwards."""
        clock = SystemClock()
        first = clock.now()
        assert clock.now() >= first

    def test_sleep_returns_false_when_not_cancelled(self):
        """Test an uncancelled sleep reports False."""
        assert SystemClock().sleep(0.001) is False
        assert SystemClock().sleep(0.001, threading.Event()) is False

    def test_sleep_cancelled_by_event(self):
        """Test a set event returns True immediately."""
        event = threading.Event()
        event.set()
        assert SystemClock().sleep(30.0, event) is True

    @pytest.mark.asyncio
    async def test_sleep_async_cancellable(self):
        """Test a pending async sleep can be cancelled."""
        task = asyncio.create_task(SystemClock().sleep_async(30.0))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

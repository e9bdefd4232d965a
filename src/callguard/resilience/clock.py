"""
Injectable time source for retry backoff and breaker timing.

Both components read time and sleep exclusively through a Clock so tests
can simulate elapsed time without sleeping.
"""

import asyncio
import threading
import time
from typing import List, Optional, Protocol


class Clock(Protocol):
    """Time source used by RetryExecutor and CircuitBreaker."""

    def now(self) -> float:
        """Monotonic seconds."""
        ...

    def sleep(self, seconds: float, cancel_event: Optional[threading.Event] = None) -> bool:
        """Block for seconds; return True if cancel_event fired first."""
        ...

    async def sleep_async(self, seconds: float) -> None:
        """Suspend the current task for seconds."""
        ...


class SystemClock:
    """Wall clock backed by time.monotonic."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel_event: Optional[threading.Event] = None) -> bool:
        if cancel_event is not None:
            return cancel_event.wait(seconds)
        time.sleep(seconds)
        return False

    async def sleep_async(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """
    Deterministic clock for tests.

    Time only moves through advance() or sleep(); every requested sleep is
    recorded in ``sleeps``.

    Example:
        clock = ManualClock()
        breaker = CircuitBreaker("billing", config, clock=clock)
        ...
        clock.advance(31)
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._lock = threading.Lock()
        self.sleeps: List[float] = []

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds

    def sleep(self, seconds: float, cancel_event: Optional[threading.Event] = None) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        self.sleeps.append(seconds)
        self.advance(seconds)
        return False

    async def sleep_async(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        # Yield so cancellation and other tasks get a turn
        await asyncio.sleep(0)


SYSTEM_CLOCK = SystemClock()

"""
pytest configuration for callguard tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import random
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from callguard.logging.context import clear_log_context  # noqa: E402
from callguard.resilience.clock import ManualClock  # noqa: E402


class ScriptedOperation:
    """
    Zero-argument operation that replays a script of outcomes.

    Each entry is either an exception instance (raised) or a value
    (returned). The last entry repeats once the script runs out.
    """

    def __init__(self, *outcomes: Any, on_call: Optional[Callable[[], None]] = None):
        self.outcomes: List[Any] = list(outcomes)
        self.calls = 0
        self.on_call = on_call

    def __call__(self) -> Any:
        self.calls += 1
        if self.on_call:
            self.on_call()
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    """Deterministic clock starting at t=1000."""
    return ManualClock(start=1000.0)


@pytest.fixture
def rng():
    """Seeded random source for reproducible jitter."""
    return random.Random(1234)


@pytest.fixture
def scripted():
    """Factory for ScriptedOperation instances."""
    return ScriptedOperation


@pytest.fixture(autouse=True)
def reset_log_context():
    """Isolate contextvar log context between tests."""
    clear_log_context()
    yield
    clear_log_context()

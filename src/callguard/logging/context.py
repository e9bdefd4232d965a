"""Log context propagation via contextvars (thread and asyncio safe)."""

import contextvars
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

CONTEXT_KEYS = ("correlation_id", "service", "operation", "worker_id")

_log_context: contextvars.ContextVar[Dict[str, Optional[str]]] = contextvars.ContextVar(
    "callguard_log_context"
)


def _empty_context() -> Dict[str, Optional[str]]:
    return {key: None for key in CONTEXT_KEYS}


def get_log_context() -> Dict[str, Optional[str]]:
    """Return a copy of the current log context (all known keys present)."""
    ctx = _empty_context()
    ctx.update(_log_context.get({}))
    return ctx


def set_log_context(**kwargs: Any) -> None:
    """
    Set context fields injected into every formatted record.

    Unknown keys raise so typos don't silently drop correlation data.
    """
    unknown = set(kwargs) - set(CONTEXT_KEYS)
    if unknown:
        raise KeyError(f"Unknown log context keys: {sorted(unknown)}")
    current = dict(_log_context.get({}))
    current.update(kwargs)
    _log_context.set(current)


def clear_log_context() -> None:
    """Reset all context fields."""
    _log_context.set({})


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Temporarily set context fields for the duration of a block.

    Example:
        with log_context(correlation_id=request_id):
            breaker.call(fetch_profile)
    """
    unknown = set(kwargs) - set(CONTEXT_KEYS)
    if unknown:
        raise KeyError(f"Unknown log context keys: {sorted(unknown)}")
    current = dict(_log_context.get({}))
    current.update(kwargs)
    token = _log_context.set(current)
    try:
        yield
    finally:
        _log_context.reset(token)

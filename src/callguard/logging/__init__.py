"""
Structured logging module.

Provides JSON logging with correlation IDs and context propagation.
Retry and breaker events are logged with their fields passed as
``extra`` so formatters and collectors receive structured data rather
than pre-formatted strings.
"""

from callguard.logging.context import (
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from callguard.logging.formatters import ConsoleFormatter, JSONFormatter
from callguard.logging.setup import get_logger, setup_logging
from callguard.logging.utilities import log_exception, log_with_context

__all__ = [
    "clear_log_context",
    "get_log_context",
    "log_context",
    "set_log_context",
    "ConsoleFormatter",
    "JSONFormatter",
    "get_logger",
    "setup_logging",
    "log_exception",
    "log_with_context",
]

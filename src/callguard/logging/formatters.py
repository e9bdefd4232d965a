"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from callguard.logging.context import CONTEXT_KEYS, get_log_context
from callguard.security import sanitize_error_message, sanitize_url


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes URLs and error text before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Errors
        "error_type",
        "error_category",
        "error_message",
        "http_status",
        # Retry events
        "attempt",
        "max_attempts",
        "delay_seconds",
        "operation_name",
        # Breaker events
        "circuit_name",
        "circuit_state",
        "previous_state",
        "new_state",
        "consecutive_failures",
        "failure_threshold",
        "reset_timeout_seconds",
        "retry_after_seconds",
        "elapsed_seconds",
        # Misc
        "duration_ms",
        "url",
    ]

    # Fields that contain URLs and should be sanitized
    URL_FIELDS = ["url"]

    def _sanitize_value(self, key: str, value: Any) -> Any:
        """Sanitize value if it's a URL or error field."""
        if not isinstance(value, str):
            return value
        if key in self.URL_FIELDS:
            return sanitize_url(value)
        if key == "error_message":
            return sanitize_error_message(value)
        return value

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with sanitized fields."""
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Inject context variables
        ctx = get_log_context()
        for key in CONTEXT_KEYS:
            if ctx[key]:
                log_entry[key] = ctx[key]

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._sanitize_value(field, value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes the correlation id and breaker name when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]

        if ctx["service"]:
            parts.append(f"[{ctx['service']}]")

        circuit_name = getattr(record, "circuit_name", None)
        if circuit_name:
            parts.append(f"[{circuit_name}]")

        prefix = " - ".join(parts)

        correlation_id = ctx["correlation_id"]
        if correlation_id:
            return f"{prefix} - [{correlation_id[:8]}] {record.getMessage()}"

        return f"{prefix} - {record.getMessage()}"

"""
Log sanitization utilities.

Provides:
- URL sanitization (token removal for logs)
- Error message sanitization

Error messages from HTTP clients routinely embed request URLs with signed
query strings or bearer tokens; everything callguard logs passes through
here first.
"""

import re
from typing import List, Pattern, Set, Tuple
from urllib.parse import urlparse, urlunparse

# Query parameters that may contain sensitive tokens
SENSITIVE_PARAMS: Set[str] = {
    "sig",
    "signature",
    "se",
    "st",
    "sp",
    "sr",
    "spr",  # Azure SAS
    "x-amz-signature",
    "x-amz-credential",
    "x-amz-security-token",  # AWS
    "token",
    "access_token",
    "api_key",
    "apikey",
    "key",
    "secret",
    "password",
    "pwd",
    "auth",
    "authorization",
}

SENSITIVE_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"bearer\s+[a-zA-Z0-9\-_.~+/]+=*", re.IGNORECASE), "bearer [REDACTED]"),
    (re.compile(r'api[_-]?key[=:]\s*[^\s"\'&]+', re.IGNORECASE), "api_key=[REDACTED]"),
    (re.compile(r'password[=:]\s*[^\s"\'&]+', re.IGNORECASE), "password=[REDACTED]"),
]

_URL_PATTERN = re.compile(r'https?://[^\s"\'<>]+')

DEFAULT_MAX_MESSAGE_LENGTH = 500


def sanitize_url(url: str) -> str:
    """
    Remove sensitive query parameters from URL.

    Preserves the path and structure for debugging while removing
    tokens that could grant access if exposed in logs.

    Args:
        url: URL that may contain sensitive parameters

    Returns:
        URL with sensitive parameters replaced with [REDACTED]
    """
    if not url:
        return url

    try:
        parsed = urlparse(url)
    except ValueError:
        return url

    if not parsed.query:
        return url

    sanitized_params = []
    for param in parsed.query.split("&"):
        if "=" in param:
            key, _ = param.split("=", 1)
            if key.lower() in SENSITIVE_PARAMS:
                sanitized_params.append(f"{key}=[REDACTED]")
                continue
        sanitized_params.append(param)

    return urlunparse(parsed._replace(query="&".join(sanitized_params)))


def sanitize_error_message(msg: str, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """
    Remove potentially sensitive data from error messages.

    Applies pattern-based redaction, sanitizes embedded URLs and truncates
    to max_length.

    Args:
        msg: Error message that may contain sensitive data
        max_length: Maximum length of returned message

    Returns:
        Sanitized and truncated error message
    """
    if not msg:
        return msg

    for pattern, replacement in SENSITIVE_PATTERNS:
        msg = pattern.sub(replacement, msg)

    msg = _URL_PATTERN.sub(lambda m: sanitize_url(m.group(0)), msg)

    if len(msg) > max_length:
        msg = msg[: max_length - 3] + "..."

    return msg

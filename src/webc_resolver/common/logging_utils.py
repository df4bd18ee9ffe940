"""Centralized logging helpers.

Every module logs through ``logging.getLogger(__name__)``; this module only
owns root configuration and the helpers used to build structured ``extra``
payloads for DEBUG traces.
"""
from __future__ import annotations

import logging
import os
import re
import time
import urllib.parse
from typing import Any, Dict, Optional

from ..constants import Constants

_SENSITIVE_QUERY_KEYS = ("token", "key", "secret", "password", "auth", "signature")
_REDACTED = "[REDACTED]"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    Args:
        level: Explicit level name. Falls back to ``WEBC_RESOLVER_LOG_LEVEL``
            and then to INFO.
    """
    level_name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted by ``logger``."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records.

    None values are dropped so formatters only see populated fields.
    """
    return {key: value for key, value in fields.items() if value is not None}


def redact(text: str) -> str:
    """Mask bearer tokens and key=value secrets in free text."""
    text = re.sub(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+", r"\1" + _REDACTED, text)
    return re.sub(
        r"(?i)\b(" + "|".join(_SENSITIVE_QUERY_KEYS) + r")=([^&\s]+)",
        r"\1=" + _REDACTED,
        text,
    )


def safe_url(url: str) -> str:
    """Return ``url`` with userinfo and secret-looking query values removed."""
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return redact(url)

    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{_REDACTED}@{netloc.rsplit('@', 1)[1]}"

    query = []
    for key, value in urllib.parse.parse_qsl(parts.query, keep_blank_values=True):
        if any(marker in key.lower() for marker in _SENSITIVE_QUERY_KEYS):
            value = _REDACTED
        query.append((key, value))

    return urllib.parse.urlunsplit(
        (parts.scheme, netloc, parts.path, urllib.parse.urlencode(query), parts.fragment)
    )


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds, live while the block is still running."""
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 2)

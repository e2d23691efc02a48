"""Centralized logging helpers.

Every module logs through ``logging.getLogger(__name__)``; this module provides
the process-wide configuration plus the small helpers used to attach structured
context (``extra=extra_context(...)``) and to keep secrets out of log lines.
"""
from __future__ import annotations

import logging
import os
import re
import sys
import time
import urllib.parse
from typing import Any, Dict, Optional

from constants import Constants

_CONTEXT_FIELDS = (
    "event",
    "component",
    "action",
    "outcome",
    "target",
    "package_id",
    "source",
    "count",
    "duration_ms",
    "status_code",
)

_SECRET_PATTERN = re.compile(r"(?i)(password|token|apikey|api_key|secret)=([^&\s]+)")


class _ContextFormatter(logging.Formatter):
    """Formatter that appends structured context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        parts = []
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                parts.append(f"{name}={value}")
        if parts:
            return f"{base} [{' '.join(parts)}]"
        return base


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once for CLI use.

    The level comes from the argument, then ``PKGRECONCILE_LOG_LEVEL``, then INFO.
    Calling this again only adjusts the level.
    """
    level_name = (level or os.environ.get(Constants.LOG_LEVEL_ENV) or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    if not any(getattr(h, "_pkgreconcile", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_ContextFormatter(Constants.LOG_FORMAT))
        handler._pkgreconcile = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted by ``logger``."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records, dropping None values."""
    return {key: value for key, value in fields.items() if value is not None}


def redact(text: Optional[str]) -> str:
    """Mask secret-looking query parameters in free text."""
    if not text:
        return ""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}=***", str(text))


def safe_url(url: Optional[str]) -> str:
    """Strip userinfo and secret query parameters from a URL for logging."""
    if not url:
        return ""
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***@" + netloc.rsplit("@", 1)[1]
    return redact(urllib.parse.urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment)))


class Timer:
    """Context manager measuring elapsed wall time in milliseconds."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        """Elapsed milliseconds so far (or total once the block exited)."""
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)

"""Structured logging configuration for kbcore.

Log records are rendered as one JSON object per line. Fields passed through
``extra`` and fields bound with :func:`log_context` end up as top-level keys,
so a merge or an ingestion run can be followed by filtering on them.
"""

import contextvars
import json
import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Bound fields are scoped to the current asyncio task.
_log_fields: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "kbcore_log_fields", default={}
)

_STANDARD_RECORD_KEYS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}

QUIET_LOGGERS = ("httpx", "httpcore")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per log record."""

    SENSITIVE_FIELDS = (
        "api_key", "password", "token", "secret", "authorization", "private_key",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        fields = dict(_log_fields.get())
        fields.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_KEYS
        )
        for key, value in fields.items():
            payload[key] = "[REDACTED]" if self.is_sensitive(key) else value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)

    @classmethod
    def is_sensitive(cls, key: str) -> bool:
        lowered = key.lower()
        return any(marker in lowered for marker in cls.SENSITIVE_FIELDS)


def setup_logging(
    format: str = "json",
    level: str = "INFO",
    log_file: Optional[str] = None
) -> None:
    """Configure the root logger.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.

    Args:
        format: "json" for structured lines, "text" for a human-readable layout
        level: Minimum level name
        log_file: Optional path that receives the same records as stderr
    """
    formatter = StructuredFormatter() if format == "json" else logging.Formatter(TEXT_FORMAT)

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # httpx logs every request at INFO
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_error(logger_name: str, event: str, error: Exception, **fields) -> None:
    """Log an exception with its type as a structured field."""
    fields["error_type"] = type(error).__name__
    get_logger(logger_name).error(f"{event}: {error}", exc_info=error, extra=fields)


def log_performance(logger_name: str, operation: str, duration_ms: float, **fields) -> None:
    """Log how long an operation took."""
    fields["duration_ms"] = duration_ms
    get_logger(logger_name).info(
        f"⏱️ {operation} completed in {duration_ms:.1f}ms", extra=fields
    )


@contextmanager
def log_context(**fields):
    """Bind fields to every record emitted within the block.

    Example:
        with log_context(merge_keeper="p-1"):
            logger.info("Rewriting events")  # carries merge_keeper
    """
    token = _log_fields.set({**_log_fields.get(), **fields})
    try:
        yield
    finally:
        _log_fields.reset(token)


class Timer:
    """Context manager measuring wall time in milliseconds.

    Example:
        with Timer() as timer:
            await recalculator.recalculate_all()
        log_performance(__name__, "recalculation", timer.duration_ms)
    """

    def __init__(self):
        self.duration_ms: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self._started) * 1000

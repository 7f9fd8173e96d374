"""PULSE: Structured JSON Logging.

One JSON object per line on stdout. Sync code attaches company_id/platform
(and batch numbers, durations) as extras so a single run can be followed
across interleaved concurrent tasks.
"""

import logging
import json
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, MutableMapping, Tuple

from app.config import settings

EXTRA_FIELDS = (
    "endpoint",
    "company_id",
    "platform",
    "batch",
    "duration_ms",
    "status_code",
)


class JSONFormatter(logging.Formatter):
    """Produces structured JSON log lines for production observability."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        return json.dumps(log_entry, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Logger that stamps fixed extras (company, platform) on every line."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str) -> logging.Logger:
    """Return a named logger with structured JSON handler."""
    logger = logging.getLogger(f"pulse.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


def with_context(logger: logging.Logger, **fields: Any) -> ContextLogger:
    return ContextLogger(logger, fields)


@contextmanager
def log_timing(logger: logging.Logger, message: str, **fields: Any) -> Iterator[None]:
    """Log message with duration_ms once the block exits, even on error."""
    started = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(message, extra={**fields, "duration_ms": duration_ms})

"""
Structured logging configuration for production use.

Provides JSON-formatted logs for better parsing and aggregation.
Records logged inside log_context() carry the sync target ids
(template_id, activity_id, local_meta_id) as extra fields.
"""
import logging
import sys
import json
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator
from core.config import settings

_sync_context: ContextVar[Dict[str, Any]] = ContextVar("task_sync_log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach `fields` to every record logged inside the block (None values are dropped)."""
    merged = dict(_sync_context.get())
    merged.update({key: str(value) for key, value in fields.items() if value is not None})
    token = _sync_context.set(merged)
    try:
        yield
    finally:
        _sync_context.reset(token)


class SyncContextFilter(logging.Filter):
    """Copies the current log_context() fields onto the record's extra_fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _sync_context.get()
        if context:
            extra_fields = dict(context)
            extra_fields.update(getattr(record, "extra_fields", None) or {})
            record.extra_fields = extra_fields
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Sync target ids and any explicit extra fields
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(SyncContextFilter())
    root_logger.addHandler(console_handler)

    # Per-row reconcile logs are DEBUG; keep SQL echo out of them
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)

    return root_logger

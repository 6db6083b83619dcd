from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id


MAX_ERROR_LENGTH = 500

# Only these ``extra`` keys reach the output; anything else passed by a caller is dropped.
REQUEST_FIELDS = frozenset({"method", "path", "status_code", "duration_ms"})
ACTOR_FIELDS = frozenset({"actor_id", "role"})
DOMAIN_FIELDS = frozenset({"check", "resource_id", "event_name", "rooms", "outcome", "error"})
LOGGED_FIELDS = REQUEST_FIELDS | ACTOR_FIELDS | DOMAIN_FIELDS

# Loggers that would duplicate http.request lines or flood the output.
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine")

_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: ``ts``, ``level``, ``logger``, ``msg``, ``correlation_id`` and ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {key: record.__dict__[key] for key in LOGGED_FIELDS if key in record.__dict__}

        error = fields.get("error")
        if isinstance(error, str) and len(error) > MAX_ERROR_LENGTH:
            fields["error"] = error[:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    """Route every logger through a single stdout JSON handler; repeated calls are no-ops."""

    root_logger = logging.getLogger()
    if getattr(root_logger, "_sales_configured", False):
        return

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved_level = logging.getLevelName(level_name)
    if not isinstance(resolved_level, int):
        resolved_level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved_level)
    handler.setFormatter(JsonLogFormatter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved_level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))
    root_logger._sales_configured = True  # type: ignore[attr-defined]

"""JSON log lines for the API.

Only whitelisted ``extra`` keys reach the output so request payloads, tokens
and passwords cannot leak through a careless ``extra=`` argument. Every record
carries the correlation id of the request that produced it.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from buildmart.core.config import Settings, get_settings
from buildmart.core.context import get_correlation_id


_BASE_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "correlation_id"}
_KNOWN_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "client_ip",
        "user_id",
        "role_id",
        "entity_id",
        "inquiry_id",
        "lead_id",
        "quotation_id",
        "quotation_number",
        "sales_order_id",
        "attendance_id",
        "document_id",
        "event_name",
        "old_status",
        "new_status",
        "count",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500

_default_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        for key, value in record.__dict__.items():
            if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS and value is not None:
                payload[key] = value[:_MAX_ERROR_LENGTH] if key == "error" and isinstance(value, str) else value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(settings: Settings | None = None) -> None:
    """Route the root logger to stdout. Safe to call more than once."""
    settings = settings or get_settings()
    root_logger = logging.getLogger()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if getattr(root_logger, "_buildmart_configured", False):
        root_logger.setLevel(level)
        return

    handler = logging.StreamHandler(stream=sys.stdout)
    if settings.log_format.lower() == "text":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"))
    else:
        handler.setFormatter(JsonLogFormatter())

    logging.setLogRecordFactory(_record_factory)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    root_logger._buildmart_configured = True  # type: ignore[attr-defined]

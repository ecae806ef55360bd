from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from crm_access.context import get_correlation_id


# Keys passed through ``extra`` that reach the JSON output; anything else is dropped.
_KNOWN_FIELDS = frozenset(
    {
        # http
        "method",
        "path",
        "status_code",
        "duration_ms",
        # identities
        "user_id",
        "actor_user_id",
        "external_id",
        "role",
        "previous_role",
        # access workflow
        "request_id",
        "requester_id",
        "receiver_id",
        "decision",
        "owner_user_id",
        "grantee_user_id",
        "grants_removed",
        "assignee_id",
        "admin_owner_id",
        "can_view_other_users_data",
        # row level security
        "resource",
        "record_id",
        "action",
        # lifecycle
        "service",
        "environment",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500

_default_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {key: value for key, value in record.__dict__.items() if key in _KNOWN_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
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


def configure_logging(level_name: str = "INFO") -> None:
    """Route every logger through one JSON stdout handler; records carry the current correlation id."""

    root_logger = logging.getLogger()
    if getattr(root_logger, "_crm_access_configured", False):
        return

    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    root_logger._crm_access_configured = True  # type: ignore[attr-defined]

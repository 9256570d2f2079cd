"""python-json-logger formatter producing Elastic Common Schema documents."""

from __future__ import annotations

import logging
import os
import traceback
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import jsonlogger

SERVICE_NAME = os.getenv("SERVICE_NAME", "booking-auth-api")

# record attribute -> ECS field
FIELD_MAP = {
    "request_id": "http.request.id",
    "client_ip": "client.ip",
    "user_agent": "user_agent.original",
    "user_id": "user.id",
    "user_role": "user.roles",
    "target_user_id": "user.target.id",
    "http_request_method": "http.request.method",
    "http_status_code": "http.response.status_code",
    "url_path": "url.path",
    "url_query": "url.query",
    "event_dataset": "event.dataset",
    "event_action": "event.action",
    "event_kind": "event.kind",
    "event_outcome": "event.outcome",
    "event_duration": "event.duration",
    "error_type": "error.type",
    "error_message": "error.message",
    "error_stack": "error.stack",
    "auth_method": "authentication.method",
    "auth_failure_reason": "authentication.outcome.reason",
    "failed_login_attempts": "account.failed_attempts",
    "lockout_until": "account.lockout.until",
    "validation_error_count": "validation.error.count",
}

# Only IPOverrideFilter may look at these.
_DROPPED = ("client_ip_raw", "client_ip_anonymized")


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, bytes)):
        return str(value)
    return value


class ECSJsonFormatter(jsonlogger.JsonFormatter):
    def __init__(self, *args: Any, service_name: str = SERVICE_NAME, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(
        self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        for name in _DROPPED:
            log_record.pop(name, None)
        for attr, ecs_name in FIELD_MAP.items():
            value = log_record.pop(attr, None)
            if value is None:
                value = getattr(record, attr, None)
            if value is not None:
                log_record[ecs_name] = value

        if record.exc_info and "error.stack" not in log_record:
            log_record["error.stack"] = "".join(traceback.format_exception(*record.exc_info)).strip()
        log_record.setdefault("event.dataset", f"{self.service_name}.app")
        log_record["service.name"] = getattr(record, "service_name", None) or self.service_name
        envelope = {
            "@timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "log.level": record.levelname,
            "log.logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in envelope.items():
            log_record.setdefault(key, value)

        for key in list(log_record):
            if log_record[key] is None:
                del log_record[key]
            else:
                log_record[key] = _jsonable(log_record[key])

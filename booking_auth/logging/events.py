"""Named security event streams."""

from __future__ import annotations

import logging
import uuid
from typing import Any


class EventLog:
    """Emit ECS-style events on one logger under one dataset.

    ``None`` fields are dropped and UUIDs are rendered as strings.
    """

    def __init__(self, name: str, dataset: str) -> None:
        self.logger = logging.getLogger(name)
        self.dataset = dataset

    def log(self, level: int, message: str, action: str, **fields: Any) -> None:
        extra = {"event_dataset": self.dataset, "event_action": action}
        for key, value in fields.items():
            if value is None:
                continue
            extra[key] = str(value) if isinstance(value, uuid.UUID) else value
        self.logger.log(level, message, extra=extra)

    def info(self, message: str, action: str, **fields: Any) -> None:
        self.log(logging.INFO, message, action, **fields)

    def warning(self, message: str, action: str, **fields: Any) -> None:
        self.log(logging.WARNING, message, action, **fields)


auth_events = EventLog("booking_auth.auth", "booking-auth-api.auth")
audit_events = EventLog("booking_auth.audit", "booking-auth-api.audit")

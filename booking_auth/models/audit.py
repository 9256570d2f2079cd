"""Audit trail for password reset activity."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..database import Base
from .types import UTCDateTime

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .users import User


class PasswordResetAction(str, Enum):
    REQUEST = "request"
    ATTEMPT = "attempt"
    SUCCESS = "success"
    FAILURE = "failure"
    EXPIRED = "expired"


class PasswordResetLog(Base):
    """One row per password reset event, kept for administrators."""

    __tablename__ = "password_reset_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    token_identifier: Mapped[str | None] = mapped_column(String(16), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )

    user: Mapped["User"] = relationship("User", back_populates="password_reset_logs")


Index("ix_password_reset_logs_email", PasswordResetLog.email)
Index("ix_password_reset_logs_created_at", PasswordResetLog.created_at)
Index("ix_password_reset_logs_action", PasswordResetLog.action)

"""Hashed one-time secrets sent by email."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..database import Base
from .types import UTCDateTime

if TYPE_CHECKING:  # pragma: no cover
    from .users import User


class VerificationTokenKind(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class VerificationToken(Base):
    """An emailed link token, plus a six digit code for email verification.

    Only peppered digests are stored. A row is spent once ``consumed_at`` is
    set, either by use or because a newer token of the same kind replaced it.
    """

    __tablename__ = "verification_tokens"
    __table_args__ = (
        Index("ix_verification_tokens_user_kind", "user_id", "kind"),
        Index("ix_verification_tokens_active", "user_id", "kind", "consumed_at"),
        Index("ix_verification_tokens_token_hash", "token_hash"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE")
    )
    kind: Mapped[str] = mapped_column(String(64))
    token_hash: Mapped[str] = mapped_column(String(128))
    code_hash: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime)
    consumed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    user: Mapped[User] = relationship(back_populates="verification_tokens")

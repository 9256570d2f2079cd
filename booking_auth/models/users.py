"""User domain models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ..database import Base
from .types import UTCDateTime

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .audit import PasswordResetLog
    from .auth_tokens import BlacklistedToken, RefreshToken
    from .verification import VerificationToken


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserRole(str, Enum):
    """Roles granted to accounts, ordered by privilege."""

    CUSTOMER = "customer"
    MANAGER = "manager"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[str, int] = {
    UserRole.CUSTOMER.value: 1,
    UserRole.MANAGER.value: 2,
    UserRole.ADMIN.value: 3,
}


def role_rank(role: str | None) -> int:
    """Return the privilege level for ``role``; unknown roles rank lowest."""

    if role is None:
        return 0
    value = role.value if isinstance(role, UserRole) else str(role)
    return ROLE_HIERARCHY.get(value, 0)


class User(Base):
    """A registered guest or staff member of the booking platform."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Stored lowercased; lookups compare on lower(email).
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # Allow extra room for bcrypt_sha256 and future password hashing schemes
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(16), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserRole.CUSTOMER.value,
        server_default=UserRole.CUSTOMER.value,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    email_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    failed_login_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    lockout_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    lockout_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_active_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    password_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    pref_newsletter: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    pref_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    pref_language: Mapped[str] = mapped_column(
        String(5), nullable=False, default="en", server_default="en"
    )

    registration_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    registration_user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(
        "RefreshToken", back_populates="user", cascade="all, delete-orphan"
    )
    blacklisted_tokens: Mapped[list["BlacklistedToken"]] = relationship(
        "BlacklistedToken", back_populates="user", cascade="all, delete-orphan"
    )
    verification_tokens: Mapped[list["VerificationToken"]] = relationship(
        "VerificationToken", back_populates="user", cascade="all, delete-orphan"
    )
    password_reset_logs: Mapped[list["PasswordResetLog"]] = relationship(
        "PasswordResetLog", back_populates="user"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def email_verified(self) -> bool:
        return self.email_verified_at is not None


Index("ix_users_role", User.role)
Index("ix_users_is_active", User.is_active)

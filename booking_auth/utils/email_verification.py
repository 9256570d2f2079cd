"""Email verification secrets: a link token plus a six digit code."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from .. import models
from ..config import (
    EMAIL_VERIFICATION_DAILY_LIMIT,
    EMAIL_VERIFICATION_RESEND_COOLDOWN,
    EMAIL_VERIFICATION_TTL_MINUTES,
)
from . import one_time_tokens
from .one_time_tokens import Kind, digest_matches, utcnow

_TTL = timedelta(minutes=EMAIL_VERIFICATION_TTL_MINUTES)


def issue_verification_token(
    db: Session,
    user: models.User,
    *,
    now: datetime | None = None,
) -> tuple[str, str, datetime]:
    """Return ``(token, code, expires_at)``; only the newest pair stays valid."""

    token = secrets.token_urlsafe(32)
    code = f"{secrets.randbelow(10**6):06d}"
    record = one_time_tokens.store(
        db,
        user,
        Kind.EMAIL_VERIFICATION,
        token=token,
        code=code,
        issued_at=now or utcnow(),
        ttl=_TTL,
    )
    return token, code, record.expires_at


def resend_blocked(
    db: Session, user: models.User, *, now: datetime | None = None
) -> str | None:
    return one_time_tokens.throttle_reason(
        db,
        user.id,
        Kind.EMAIL_VERIFICATION,
        cooldown_seconds=EMAIL_VERIFICATION_RESEND_COOLDOWN,
        daily_limit=EMAIL_VERIFICATION_DAILY_LIMIT,
        now=now or utcnow(),
    )


def latest_token(db: Session, user: models.User) -> models.VerificationToken | None:
    return one_time_tokens.newest(db, user.id, Kind.EMAIL_VERIFICATION)


def token_matches(record: models.VerificationToken | None, raw: str | None) -> bool:
    return record is not None and digest_matches(record.token_hash, raw)


def code_matches(record: models.VerificationToken | None, raw: str | None) -> bool:
    return record is not None and digest_matches(record.code_hash, raw)


def mark_verified(
    db: Session, user: models.User, *, at: datetime | None = None
) -> None:
    """Set ``email_verified_at`` and close any verification secret still open."""

    at = at or utcnow()
    user.email_verified_at = at
    one_time_tokens.retire_open(db, user.id, Kind.EMAIL_VERIFICATION, at=at)

"""Password reset secrets and the reset audit trail."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from .. import models
from ..config import (
    PASSWORD_RESET_DAILY_LIMIT,
    PASSWORD_RESET_REQUEST_COOLDOWN,
    PASSWORD_RESET_TTL_MINUTES,
)
from . import one_time_tokens
from .network import get_client_ip, get_user_agent
from .one_time_tokens import Kind, peppered_digest, utcnow

_TTL = timedelta(minutes=PASSWORD_RESET_TTL_MINUTES)
# Audit rows keep only this much of the digest.
_AUDIT_DIGEST_CHARS = 16


def request_blocked(
    db: Session, user: models.User, *, now: datetime | None = None
) -> str | None:
    return one_time_tokens.throttle_reason(
        db,
        user.id,
        Kind.PASSWORD_RESET,
        cooldown_seconds=PASSWORD_RESET_REQUEST_COOLDOWN,
        daily_limit=PASSWORD_RESET_DAILY_LIMIT,
        now=now or utcnow(),
    )


def issue_reset_token(
    db: Session, user: models.User, *, now: datetime | None = None
) -> tuple[str, datetime]:
    token = secrets.token_urlsafe(32)
    record = one_time_tokens.store(
        db,
        user,
        Kind.PASSWORD_RESET,
        token=token,
        code=None,
        issued_at=now or utcnow(),
        ttl=_TTL,
    )
    return token, record.expires_at


def find_reset_token(db: Session, raw: str) -> models.VerificationToken | None:
    return (
        db.query(models.VerificationToken)
        .filter(
            models.VerificationToken.kind == Kind.PASSWORD_RESET.value,
            models.VerificationToken.token_hash == peppered_digest(raw),
        )
        .order_by(models.VerificationToken.created_at.desc())
        .first()
    )


def spend_reset_token(
    db: Session, record: models.VerificationToken, *, at: datetime | None = None
) -> None:
    """Consume ``record`` together with every other open reset token of its owner."""

    at = at or utcnow()
    record.consumed_at = at
    one_time_tokens.retire_open(
        db, record.user_id, Kind.PASSWORD_RESET, at=at, keep_id=record.id
    )


def attempt_key(raw: str) -> str:
    """Rate limiter key for submissions of one particular reset token."""

    return peppered_digest(raw)


def audit(
    db: Session,
    request: Request,
    action: models.PasswordResetAction,
    *,
    email: str | None = None,
    user_id: UUID | None = None,
    token: str | None = None,
    error: str | None = None,
) -> models.PasswordResetLog:
    """Add a ``password_reset_logs`` row; committing is left to the caller."""

    entry = models.PasswordResetLog(
        user_id=user_id,
        email=email.lower() if email else None,
        action=action.value,
        ip_address=getattr(request.state, "client_ip_anonymized", None)
        or get_client_ip(request),
        user_agent=get_user_agent(request),
        token_identifier=peppered_digest(token)[:_AUDIT_DIGEST_CHARS] if token else None,
        error_message=error,
        created_at=utcnow(),
    )
    db.add(entry)
    return entry

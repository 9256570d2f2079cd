"""Opaque refresh tokens grouped into rotation families.

Every sign-in opens a family; each rotation adds a row to it and stamps
``rotated_at`` on its predecessor. The database only ever sees a peppered
SHA-256 of the token handed to the browser.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Query, Session

from . import models
from .config import REFRESH_ABS_TTL, REFRESH_IDLE_TTL, TOKEN_PEPPER

_PEPPER = TOKEN_PEPPER.encode("utf-8")


def hash_refresh_token(raw_token: str) -> str:
    return hashlib.sha256(_PEPPER + raw_token.encode("utf-8")).hexdigest()


def find_refresh_token(db: Session, raw_token: str, *, for_update: bool = False) -> models.RefreshToken | None:
    query = db.query(models.RefreshToken).filter(
        models.RefreshToken.token_hash == hash_refresh_token(raw_token)
    )
    if for_update:
        query = query.with_for_update()
    return query.one_or_none()


def refresh_token_expired(token: models.RefreshToken, *, now: datetime | None = None) -> bool:
    """Past the family's absolute expiry or idle for ``REFRESH_IDLE_TTL`` seconds."""

    now = now or datetime.now(UTC)
    idle_until = token.last_used_at + timedelta(seconds=REFRESH_IDLE_TTL)
    return min(token.expires_at, idle_until) <= now


def issue_refresh_token(
    db: Session,
    user: models.User,
    *,
    family_id: uuid.UUID | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
    absolute_expiry: datetime | None = None,
    lifetime: int = REFRESH_ABS_TTL,
) -> tuple[str, models.RefreshToken]:
    """Add a refresh token row for ``user`` and return the raw value with it.

    Rotations pass the family's ``absolute_expiry`` so no session outlives
    the lifetime chosen when it was opened.
    """

    raw_token = base64.urlsafe_b64encode(secrets.token_bytes(64)).decode().rstrip("=")
    now = datetime.now(UTC)
    record = models.RefreshToken(
        user_id=user.id,
        token_hash=hash_refresh_token(raw_token),
        family_id=family_id or uuid.uuid4(),
        issued_at=now,
        last_used_at=now,
        expires_at=absolute_expiry or now + timedelta(seconds=lifetime),
        user_agent=user_agent,
        ip_address=ip_address,
    )
    db.add(record)
    db.flush()
    return raw_token, record


def _revoke(query: Query, reason: str | None, timestamp: datetime | None) -> int:
    return query.filter(models.RefreshToken.revoked_at.is_(None)).update(
        {
            models.RefreshToken.revoked_at: timestamp or datetime.now(UTC),
            models.RefreshToken.revocation_reason: reason,
        },
        synchronize_session=False,
    )


def revoke_refresh_family(
    db: Session,
    family_id: uuid.UUID,
    *,
    reason: str | None = None,
    timestamp: datetime | None = None,
) -> int:
    family = db.query(models.RefreshToken).filter(models.RefreshToken.family_id == family_id)
    return _revoke(family, reason, timestamp)


def revoke_user_sessions(
    db: Session,
    user_id: uuid.UUID,
    *,
    reason: str,
    timestamp: datetime | None = None,
) -> int:
    """Revoke every live refresh token of ``user_id``; returns how many."""

    owned = db.query(models.RefreshToken).filter(models.RefreshToken.user_id == user_id)
    return _revoke(owned, reason, timestamp)

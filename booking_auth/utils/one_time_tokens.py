"""Storage primitives shared by email verification and password reset secrets.

Secrets are never persisted in clear text: rows in ``verification_tokens``
hold an HMAC-SHA256 of the secret keyed with ``TOKEN_PEPPER``. Each user has
at most one open secret per kind; issuing a new one retires the rest.
"""

from __future__ import annotations

import hashlib
import hmac
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Query, Session

from .. import models
from ..config import TOKEN_PEPPER

_PEPPER = TOKEN_PEPPER.encode("utf-8")
DAILY_WINDOW = timedelta(hours=24)

Kind = models.VerificationTokenKind


def utcnow() -> datetime:
    return datetime.now(UTC)


def peppered_digest(raw: str) -> str:
    return hmac.new(_PEPPER, raw.encode("utf-8"), hashlib.sha256).hexdigest()


def digest_matches(stored: str | None, raw: str | None) -> bool:
    """Constant-time comparison of ``raw`` against a stored digest."""

    if not stored or not raw:
        return False
    return hmac.compare_digest(stored, peppered_digest(raw))


def _of_kind(db: Session, user_id: uuid.UUID, kind: Kind) -> Query:
    return db.query(models.VerificationToken).filter(
        models.VerificationToken.user_id == user_id,
        models.VerificationToken.kind == kind.value,
    )


def newest(db: Session, user_id: uuid.UUID, kind: Kind) -> models.VerificationToken | None:
    return (
        _of_kind(db, user_id, kind)
        .order_by(models.VerificationToken.created_at.desc())
        .first()
    )


def retire_open(
    db: Session,
    user_id: uuid.UUID,
    kind: Kind,
    *,
    at: datetime,
    keep_id: uuid.UUID | None = None,
) -> None:
    """Stamp ``consumed_at`` on every unconsumed secret of ``kind`` for the user."""

    query = _of_kind(db, user_id, kind).filter(
        models.VerificationToken.consumed_at.is_(None)
    )
    if keep_id is not None:
        query = query.filter(models.VerificationToken.id != keep_id)
    query.update({models.VerificationToken.consumed_at: at}, synchronize_session=False)


def store(
    db: Session,
    user: models.User,
    kind: Kind,
    *,
    token: str,
    code: str | None,
    issued_at: datetime,
    ttl: timedelta,
) -> models.VerificationToken:
    """Retire older secrets of ``kind`` and add the digests of a new one."""

    retire_open(db, user.id, kind, at=issued_at)
    record = models.VerificationToken(
        user=user,
        kind=kind.value,
        token_hash=peppered_digest(token),
        code_hash=peppered_digest(code) if code else None,
        created_at=issued_at,
        expires_at=issued_at + ttl,
    )
    db.add(record)
    return record


def throttle_reason(
    db: Session,
    user_id: uuid.UUID,
    kind: Kind,
    *,
    cooldown_seconds: int,
    daily_limit: int,
    now: datetime,
) -> str | None:
    """Return ``"cooldown"`` or ``"limit"`` when another email must wait, else ``None``."""

    latest = newest(db, user_id, kind)
    if latest is not None and (now - latest.created_at).total_seconds() < cooldown_seconds:
        return "cooldown"
    sent_today = (
        _of_kind(db, user_id, kind)
        .filter(models.VerificationToken.created_at >= now - DAILY_WINDOW)
        .count()
    )
    if sent_today >= daily_limit:
        return "limit"
    return None

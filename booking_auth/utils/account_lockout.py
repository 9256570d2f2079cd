"""Failed sign-in tracking and progressive account lockout."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from .. import models
from ..config import LOCKOUT_DURATIONS_MINUTES, MAX_FAILED_LOGIN_ATTEMPTS


def _now() -> datetime:
    return datetime.now(UTC)


def lockout_remaining(user: models.User, *, now: datetime | None = None) -> int:
    """Return the seconds left on an active lock, or ``0`` when unlocked."""

    if user.lockout_until is None:
        return 0
    remaining = (user.lockout_until - (now or _now())).total_seconds()
    return max(0, int(remaining + 0.999))


def register_failed_login(
    user: models.User, *, now: datetime | None = None
) -> datetime | None:
    """Count a failed password check and lock the account when the limit is hit.

    Each successive lock uses the next entry of ``LOCKOUT_DURATIONS_MINUTES``
    (the last entry repeats). Returns the new ``lockout_until`` when this call
    locked the account.
    """

    current = now or _now()
    user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
    if user.failed_login_attempts < MAX_FAILED_LOGIN_ATTEMPTS:
        return None

    index = min(user.lockout_count or 0, len(LOCKOUT_DURATIONS_MINUTES) - 1)
    locked_until = current + timedelta(minutes=LOCKOUT_DURATIONS_MINUTES[index])
    user.lockout_until = locked_until
    user.lockout_count = (user.lockout_count or 0) + 1
    user.failed_login_attempts = 0
    return locked_until


def clear_failed_logins(user: models.User) -> None:
    """Reset counters after a successful sign-in or password reset."""

    user.failed_login_attempts = 0
    user.lockout_count = 0
    user.lockout_until = None


def unlock_account(user: models.User) -> bool:
    """Clear lockout state; returns whether the account was locked."""

    was_locked = lockout_remaining(user) > 0
    clear_failed_logins(user)
    return was_locked

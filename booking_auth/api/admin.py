"""Administrator endpoints for account management and reset auditing."""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_role
from ..database import get_db
from ..logging import audit_events
from ..refresh_tokens import revoke_user_sessions
from ..utils.account_lockout import unlock_account
from .deps import page_count, require_json

router = APIRouter(prefix="/admin", tags=["admin"])

_admin_dependency = Depends(require_role(models.UserRole.ADMIN))


def _get_user_or_404(db: Session, user_id: uuid.UUID) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


@router.get("/users", response_model=schemas.UserPage)
def list_users(
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    role: models.UserRole | None = None,
    verified: bool | None = None,
    active: bool | None = None,
    db: Session = Depends(get_db),
    admin: models.User = _admin_dependency,
) -> schemas.UserPage:
    """Return users, newest first, filtered by role and account state."""

    query = db.query(models.User)
    if role is not None:
        query = query.filter(models.User.role == role.value)
    if verified is True:
        query = query.filter(models.User.email_verified_at.is_not(None))
    elif verified is False:
        query = query.filter(models.User.email_verified_at.is_(None))
    if active is not None:
        query = query.filter(models.User.is_active.is_(active))

    total = query.count()
    users = (
        query.order_by(models.User.created_at.desc(), models.User.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return schemas.UserPage(
        items=[schemas.AdminUserRead.model_validate(user) for user in users],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


@router.get("/users/{user_id}", response_model=schemas.AdminUserRead)
def get_user_detail(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: models.User = _admin_dependency,
) -> schemas.AdminUserRead:
    return schemas.AdminUserRead.model_validate(_get_user_or_404(db, user_id))


@router.patch(
    "/users/{user_id}",
    response_model=schemas.AdminUserRead,
    dependencies=[Depends(require_json)],
)
def update_user(
    user_id: uuid.UUID,
    payload: schemas.AdminUserUpdate,
    db: Session = Depends(get_db),
    admin: models.User = _admin_dependency,
) -> schemas.AdminUserRead:
    """Change another account's role, status or contact details.

    Administrators cannot demote or deactivate themselves, which keeps at
    least the acting admin able to undo mistakes.
    """

    user = _get_user_or_404(db, user_id)
    # Only the phone number can be cleared; other nulls leave the field alone.
    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field == "phone"
    }

    if user.id == admin.id:
        if "role" in changes and changes["role"] != models.UserRole(user.role):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You cannot change your own role",
            )
        if changes.get("is_active") is False:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You cannot deactivate your own account",
            )

    previous_role = user.role
    deactivated = user.is_active and changes.get("is_active") is False
    for field, value in changes.items():
        if field == "role":
            user.role = models.UserRole(value).value
        else:
            setattr(user, field, value)
    if deactivated:
        revoke_user_sessions(db, user.id, reason="deactivated_by_admin")
    db.commit()
    db.refresh(user)

    audit_events.info(
        "User updated by administrator",
        "admin_user_updated",
        user_id=admin.id,
        target_user_id=user.id,
        user_role=user.role,
        previous_role=previous_role,
        account_deactivated=deactivated,
    )
    return schemas.AdminUserRead.model_validate(user)


@router.post("/users/{user_id}/unlock", response_model=schemas.AdminUserRead)
def unlock_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: models.User = _admin_dependency,
) -> schemas.AdminUserRead:
    user = _get_user_or_404(db, user_id)
    was_locked = unlock_account(user)
    db.commit()
    db.refresh(user)
    audit_events.info(
        "Account unlocked by administrator",
        "admin_account_unlocked",
        user_id=admin.id,
        target_user_id=user.id,
        account_was_locked=was_locked,
    )
    return schemas.AdminUserRead.model_validate(user)


@router.get("/password-resets", response_model=schemas.PasswordResetLogPage)
def list_password_resets(
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    email: str | None = Query(default=None, max_length=255),
    action: models.PasswordResetAction | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
    admin: models.User = _admin_dependency,
) -> schemas.PasswordResetLogPage:
    """Page through password reset audit entries, newest first.

    ``end_date`` is inclusive: entries from that whole day are returned.
    """

    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must not be after end_date",
        )
    query = db.query(models.PasswordResetLog)
    if email:
        query = query.filter(models.PasswordResetLog.email == email.strip().lower())
    if action is not None:
        query = query.filter(models.PasswordResetLog.action == action.value)
    if start_date:
        query = query.filter(models.PasswordResetLog.created_at >= _day_start(start_date))
    if end_date:
        query = query.filter(
            models.PasswordResetLog.created_at < _day_start(end_date + timedelta(days=1))
        )

    total = query.count()
    entries = (
        query.order_by(models.PasswordResetLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return schemas.PasswordResetLogPage(
        items=[schemas.PasswordResetLogRead.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )

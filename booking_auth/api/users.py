"""Signed-in account endpoints: profile, password change and deactivation."""

from datetime import datetime, timezone
from typing import Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    HTTPException,
    Response,
    status,
)
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import (
    blacklist_access_token,
    get_current_token_payload,
    get_current_user,
    get_verified_user,
    hash_password,
    verify_password,
)
from ..database import get_db
from ..logging import auth_events
from ..refresh_tokens import revoke_user_sessions
from ..utils.account_notifications import send_password_changed_notice
from .deps import no_store, require_json
from .sessions import clear_session_cookies

router = APIRouter()


@router.get("/users/me", response_model=schemas.UserRead)
def read_profile(
    response: Response,
    current_user: models.User = Depends(get_current_user),
) -> schemas.UserRead:
    """Return the signed-in user's profile."""

    no_store(response)
    return schemas.UserRead.model_validate(current_user)


@router.put(
    "/users/me",
    response_model=schemas.UserRead,
    dependencies=[Depends(require_json)],
)
def update_profile(
    payload: schemas.UserUpdate,
    response: Response,
    current_user: models.User = Depends(get_verified_user),
    db: Session = Depends(get_db),
) -> schemas.UserRead:
    """Update names, phone number and preferences of the signed-in user."""

    changes: dict[str, Any] = payload.model_dump(exclude_unset=True, exclude={"preferences"})
    for field, value in changes.items():
        if field in {"first_name", "last_name"} and value is None:
            continue
        setattr(current_user, field, value)
    if payload.preferences is not None:
        current_user.pref_newsletter = payload.preferences.newsletter
        current_user.pref_notifications = payload.preferences.notifications
        current_user.pref_language = payload.preferences.language
    db.add(current_user)
    db.commit()
    db.refresh(current_user)
    auth_events.info("Profile updated", "profile_updated", user_id=current_user.id)
    no_store(response)
    return schemas.UserRead.model_validate(current_user)


@router.put(
    "/users/me/password",
    response_model=schemas.Message,
    dependencies=[Depends(require_json)],
)
def change_password(
    payload: schemas.PasswordChange,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: models.User = Depends(get_current_user),
    token_payload: dict[str, Any] = Depends(get_current_token_payload),
    db: Session = Depends(get_db),
) -> schemas.Message:
    """Change the password and sign the user out of every session."""

    if not verify_password(payload.current_password, current_user.password_hash):
        auth_events.warning(
            "Password change rejected",
            "password_change_failed",
            user_id=current_user.id,
            auth_failure_reason="invalid_credentials",
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    now = datetime.now(timezone.utc)
    current_user.password_hash = hash_password(payload.new_password)
    current_user.password_changed_at = now
    revoke_user_sessions(db, current_user.id, reason="password_changed", timestamp=now)
    blacklist_access_token(db, token_payload, reason="password_changed")
    db.commit()
    send_password_changed_notice(background_tasks, current_user)
    auth_events.info("Password changed", "password_changed", user_id=current_user.id)
    clear_session_cookies(response)
    no_store(response)
    return schemas.Message(detail="Password updated. Please sign in again.")


@router.delete(
    "/users/me",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_json)],
)
def deactivate_account(
    payload: schemas.AccountDeletion,
    current_user: models.User = Depends(get_current_user),
    token_payload: dict[str, Any] = Depends(get_current_token_payload),
    db: Session = Depends(get_db),
) -> Response:
    """Deactivate the signed-in account after confirming the password."""

    if not verify_password(payload.password, current_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password is incorrect",
        )
    current_user.is_active = False
    revoke_user_sessions(db, current_user.id, reason="account_deactivated")
    blacklist_access_token(db, token_payload, reason="account_deactivated")
    db.commit()
    auth_events.info(
        "Account deactivated by owner", "account_deactivated", user_id=current_user.id
    )
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookies(response)
    return response

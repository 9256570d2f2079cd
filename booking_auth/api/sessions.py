"""Sign-in, refresh token rotation and sign-out."""

from __future__ import annotations

import secrets
import time
from collections import defaultdict, deque
from datetime import UTC, datetime
from typing import Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Form,
    HTTPException,
    Request,
    Response,
    status,
)
from fastapi.responses import ORJSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import (
    blacklist_access_token,
    create_access_token_for,
    decode_access_token,
    get_current_token_payload,
    get_current_user,
    get_user,
    optional_oauth2_scheme,
    verify_password,
)
from ..config import (
    COOKIE_DOMAIN,
    COOKIE_SAMESITE,
    COOKIE_SECURE,
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    REFRESH_ABS_TTL,
    REFRESH_COOKIE_NAME,
    REFRESH_REMEMBER_TTL,
)
from ..database import get_db
from ..logging import auth_events, set_user_context
from ..refresh_tokens import (
    find_refresh_token,
    issue_refresh_token,
    refresh_token_expired,
    revoke_refresh_family,
    revoke_user_sessions,
)
from ..utils.account_lockout import (
    clear_failed_logins,
    lockout_remaining,
    register_failed_login,
)
from ..utils.account_notifications import send_account_locked_notice
from ..utils.network import get_user_agent
from .deps import masked_ip, no_store, no_store_error, no_store_json, stored_ip

router = APIRouter()

# Failed logins are logged at most this often per client address.
_FAILURE_LOG_LIMIT = 10
_FAILURE_LOG_WINDOW = 60
_failure_attempts: dict[str, deque[float]] = defaultdict(deque)

_REFRESH_PATH = "/auth"
LOCKED_DETAIL = (
    "Account temporarily locked after too many failed sign-in attempts. "
    "Try again later."
)


def _failure_worth_logging(client: str) -> bool:
    now = time.monotonic()
    seen = _failure_attempts[client]
    while seen and now - seen[0] > _FAILURE_LOG_WINDOW:
        seen.popleft()
    seen.append(now)
    return len(seen) <= _FAILURE_LOG_LIMIT


def _set_session_cookies(response: Response, refresh_token: str, max_age: int) -> None:
    """Attach the HttpOnly refresh cookie and a fresh readable CSRF cookie."""

    common = {"secure": COOKIE_SECURE, "samesite": COOKIE_SAMESITE, "domain": COOKIE_DOMAIN, "max_age": max_age}
    response.set_cookie(REFRESH_COOKIE_NAME, refresh_token, httponly=True, path=_REFRESH_PATH, **common)
    response.set_cookie(CSRF_COOKIE_NAME, secrets.token_urlsafe(32), httponly=False, path="/", **common)


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(REFRESH_COOKIE_NAME, path=_REFRESH_PATH, domain=COOKIE_DOMAIN)
    response.delete_cookie(CSRF_COOKIE_NAME, path="/", domain=COOKIE_DOMAIN)


def _locked(seconds: float) -> ORJSONResponse:
    return no_store_json(
        {"detail": LOCKED_DETAIL},
        status.HTTP_423_LOCKED,
        {"Retry-After": str(max(1, int(seconds)))},
    )


def _session_response(
    user: models.User, refresh_token: str, cookie_age: int
) -> ORJSONResponse:
    access_token, expires_at = create_access_token_for(user)
    set_user_context(str(user.id))
    body: dict[str, Any] = {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": max(0, int((expires_at - datetime.now(UTC)).total_seconds())),
        "user_id": str(user.id),
        "email_verified": user.email_verified,
        "role": user.role,
    }
    response = no_store_json(body)
    _set_session_cookies(response, refresh_token, cookie_age)
    return response


@router.post("/auth/login", response_model=schemas.Token)
def login(
    request: Request,
    background_tasks: BackgroundTasks,
    form_data: OAuth2PasswordRequestForm = Depends(),
    remember_me: bool = Form(False),
    db: Session = Depends(get_db),
) -> ORJSONResponse:
    """Exchange email and password for an access token and a refresh cookie.

    A locked account is refused before its password is looked at, so guessing
    right during a lock gains nothing.
    """

    if not form_data.username or not form_data.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing username or password",
        )
    client_ip = masked_ip(request)
    now = datetime.now(UTC)
    user = get_user(db, form_data.username)

    if user is not None and (seconds_left := lockout_remaining(user, now=now)):
        auth_events.warning(
            "Login refused for locked account",
            "login_blocked",
            client_ip=client_ip,
            auth_method="password",
            auth_failure_reason="account_locked",
            user_id=user.id,
        )
        return _locked(seconds_left)

    if user is None or not verify_password(form_data.password, user.password_hash):
        locked_until = None
        if user is not None:
            locked_until = register_failed_login(user, now=now)
            db.commit()
        if _failure_worth_logging(client_ip or "unknown"):
            auth_events.warning(
                "Authentication failed",
                "login_failed",
                client_ip=client_ip,
                auth_method="password",
                auth_failure_reason="invalid_credentials",
            )
        if locked_until is not None:
            auth_events.warning(
                "Account locked after repeated failures",
                "account_locked",
                user_id=user.id,
                lockout_until=locked_until.isoformat(),
            )
            send_account_locked_notice(background_tasks, user, locked_until=locked_until)
            return _locked((locked_until - now).total_seconds())
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        auth_events.info(
            "Login blocked for deactivated account",
            "login_blocked",
            client_ip=client_ip,
            auth_method="password",
            auth_failure_reason="account_inactive",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    clear_failed_logins(user)
    user.last_login_at = user.last_active_at = now
    lifetime = REFRESH_REMEMBER_TTL if remember_me else REFRESH_ABS_TTL
    raw_refresh, record = issue_refresh_token(
        db,
        user,
        user_agent=get_user_agent(request),
        ip_address=stored_ip(request),
        lifetime=lifetime,
    )
    response = _session_response(user, raw_refresh, lifetime)
    db.commit()
    auth_events.info(
        "Authentication successful",
        "login_success",
        client_ip=client_ip,
        auth_method="password",
        refresh_family_id=record.family_id,
        user_role=user.role,
    )
    return response


def _refresh_failure(detail: str) -> HTTPException:
    return no_store_error(status.HTTP_401_UNAUTHORIZED, detail)


@router.post("/auth/refresh", response_model=schemas.Token)
def refresh_token(request: Request, db: Session = Depends(get_db)) -> ORJSONResponse:
    """Rotate the refresh cookie and mint a new access token.

    Presenting a token that was already rotated revokes its whole family.
    """

    csrf_cookie = request.cookies.get(CSRF_COOKIE_NAME)
    csrf_header = request.headers.get(CSRF_HEADER_NAME)
    if not (csrf_cookie and csrf_header and secrets.compare_digest(csrf_cookie, csrf_header)):
        raise no_store_error(status.HTTP_403_FORBIDDEN, "Invalid CSRF token")

    raw_refresh = request.cookies.get(REFRESH_COOKIE_NAME)
    if not raw_refresh:
        raise _refresh_failure("Missing refresh token")

    current = find_refresh_token(db, raw_refresh, for_update=True)
    if current is None:
        raise _refresh_failure("Invalid refresh token")

    now = datetime.now(UTC)
    if current.rotated_at is not None:
        revoke_refresh_family(db, current.family_id, reason="reuse_detected", timestamp=now)
        db.commit()
        auth_events.warning(
            "Refresh token reuse detected",
            "refresh_reuse_detected",
            user_id=current.user_id,
            refresh_family_id=current.family_id,
        )
        raise _refresh_failure("Refresh token reuse detected")
    if current.revoked_at is not None:
        raise _refresh_failure("Refresh token revoked")
    if refresh_token_expired(current, now=now):
        current.revoked_at = now
        current.revocation_reason = "expired"
        db.commit()
        raise _refresh_failure("Refresh token expired")

    user = current.user
    if not user.is_active:
        revoke_refresh_family(db, current.family_id, reason="account_inactive", timestamp=now)
        db.commit()
        raise _refresh_failure("Account is deactivated")

    current.rotated_at = current.last_used_at = now
    raw_next, successor = issue_refresh_token(
        db,
        user,
        family_id=current.family_id,
        user_agent=current.user_agent,
        ip_address=stored_ip(request),
        absolute_expiry=current.expires_at,
    )
    successor.last_used_at = now
    cookie_age = max(1, int((current.expires_at - now).total_seconds()))
    response = _session_response(user, raw_next, cookie_age)
    db.commit()
    return response


def _signed_out() -> Response:
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookies(response)
    return no_store(response)


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    request: Request,
    access_token: str | None = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db),
) -> Response:
    """End the session behind the refresh cookie and retire the bearer token."""

    raw_refresh = request.cookies.get(REFRESH_COOKIE_NAME)
    if raw_refresh:
        record = find_refresh_token(db, raw_refresh)
        if record is not None:
            revoke_refresh_family(db, record.family_id, reason="logout")
    if access_token:
        try:
            claims = decode_access_token(access_token)
        except JWTError:
            auth_events.info(
                "Logout presented an unusable access token", "logout_token_ignored"
            )
        else:
            blacklist_access_token(db, claims, reason="logout")
    db.commit()
    auth_events.info("User logged out", "logout")
    return _signed_out()


@router.post("/auth/logout/all", status_code=status.HTTP_204_NO_CONTENT)
def logout_everywhere(
    current_user: models.User = Depends(get_current_user),
    token_payload: dict[str, Any] = Depends(get_current_token_payload),
    db: Session = Depends(get_db),
) -> Response:
    """Revoke every refresh session of the user and the current access token."""

    revoked = revoke_user_sessions(db, current_user.id, reason="logout_all")
    blacklist_access_token(db, token_payload, reason="logout_all")
    db.commit()
    auth_events.info(
        "User logged out of all sessions",
        "logout_all",
        user_id=current_user.id,
        revoked_sessions=revoked,
    )
    return _signed_out()

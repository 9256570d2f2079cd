"""Anonymous password reset and the password strength meter."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from .. import models, rate_limit, schemas
from ..auth import get_user, hash_password
from ..database import get_db
from ..logging import auth_events
from ..refresh_tokens import revoke_user_sessions
from ..utils import password_reset as resets
from ..utils.account_lockout import clear_failed_logins
from ..utils.account_notifications import (
    send_password_reset_confirmation,
    send_password_reset_email,
)
from ..utils.password_policy import validate_password_policy
from .deps import masked_ip, no_store_json

router = APIRouter()

Action = models.PasswordResetAction

_FORGOT_ACK = {
    "detail": "If an account exists for that email, we'll send password reset instructions shortly."
}
_RESET_ACK = {"detail": "If the reset token is valid, your password has been updated."}

_NEW_RESET_HINT = "Request a new password reset email to continue."
# failure reason -> (status code, reported status, detail)
_TOKEN_FAILURES: dict[str, tuple[int, str, str]] = {
    "token_missing": (
        status.HTTP_404_NOT_FOUND,
        "invalid",
        f"This password reset link is invalid. {_NEW_RESET_HINT}",
    ),
    "token_consumed": (
        status.HTTP_409_CONFLICT,
        "consumed",
        f"This password reset link has already been used. {_NEW_RESET_HINT}",
    ),
    "token_expired": (
        status.HTTP_410_GONE,
        "expired",
        f"This password reset link has expired. {_NEW_RESET_HINT}",
    ),
}
_TOKEN_FAILURES["user_missing"] = _TOKEN_FAILURES["token_missing"]


def _token_problem(record: models.VerificationToken | None, now: datetime) -> str | None:
    if record is None:
        return "token_missing"
    if record.consumed_at is not None:
        return "token_consumed"
    if record.expires_at < now:
        return "token_expired"
    if record.user is None or not record.user.is_active:
        return "user_missing"
    return None


def _throttled(exc: HTTPException) -> ORJSONResponse:
    return no_store_json({**_RESET_ACK, "status": "rate_limited"}, exc.status_code, exc.headers)


async def _guard_token_lookup(request: Request, token: str, scope: str) -> ORJSONResponse | None:
    """Spend a token lookup slot; return the throttled reply when none is left."""

    try:
        await rate_limit.reset_token_checks.hit(request, resets.attempt_key(token))
    except HTTPException as exc:
        if exc.status_code != status.HTTP_429_TOO_MANY_REQUESTS:
            raise
        auth_events.warning(
            "Password reset token lookup rate limited",
            "password_reset_rate_limited",
            rate_limit_scope=scope,
            client_ip=masked_ip(request),
        )
        return _throttled(exc)
    return None


async def _token_failure(
    request: Request,
    token: str,
    reason: str,
    record: models.VerificationToken | None,
) -> ORJSONResponse:
    """Count a bad token against the failure budget and describe what was wrong."""

    try:
        await rate_limit.reset_failures.hit(request, resets.attempt_key(token))
    except HTTPException as exc:
        if exc.status_code != status.HTTP_429_TOO_MANY_REQUESTS:
            raise
        auth_events.warning(
            "Password reset failure rate limited",
            "password_reset_rate_limited",
            rate_limit_scope="token_failure",
            client_ip=masked_ip(request),
            password_reset_failure_reason=reason,
        )
        return _throttled(exc)
    auth_events.warning(
        "Password reset token rejected",
        "password_reset_failed",
        password_reset_failure_reason=reason,
        user_id=record.user_id if record is not None else None,
    )
    status_code, state, detail = _TOKEN_FAILURES[reason]
    return no_store_json({"detail": detail, "status": state}, status_code)


@router.post("/auth/password/forgot", response_model=schemas.Message)
async def request_password_reset(
    request: Request,
    payload: schemas.PasswordResetRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> ORJSONResponse:
    """Email a reset link; every outcome gets the same reply."""

    try:
        await rate_limit.reset_requests.hit(request, payload.email)
    except HTTPException as exc:
        if exc.status_code != status.HTTP_429_TOO_MANY_REQUESTS:
            raise
        auth_events.warning(
            "Password reset request rate limited",
            "password_reset_rate_limited",
            rate_limit_scope="request",
            client_ip=masked_ip(request),
        )
        return no_store_json(_FORGOT_ACK, exc.status_code, exc.headers)

    ack = no_store_json(_FORGOT_ACK, status.HTTP_202_ACCEPTED)
    user = get_user(db, payload.email)
    if user is None or not user.is_active:
        resets.audit(
            db,
            request,
            Action.FAILURE,
            email=payload.email,
            user_id=user.id if user else None,
            error="account_inactive" if user else "account_not_found",
        )
        db.commit()
        auth_events.info(
            "Anonymous password reset request",
            "password_reset_requested",
            email_known_user=user is not None,
        )
        return ack

    blocked = resets.request_blocked(db, user)
    if blocked:
        resets.audit(
            db, request, Action.FAILURE, email=user.email, user_id=user.id, error=f"throttled_{blocked}"
        )
        db.commit()
        auth_events.info(
            "Password reset request throttled",
            "password_reset_throttled",
            user_id=user.id,
            password_reset_throttle_reason=blocked,
        )
        return ack

    token, expires_at = resets.issue_reset_token(db, user)
    resets.audit(db, request, Action.REQUEST, email=user.email, user_id=user.id, token=token)
    db.commit()
    send_password_reset_email(
        background_tasks, user, token=token, expires_at=expires_at, immediately=True
    )
    auth_events.info("Password reset email issued", "password_reset_email_sent", user_id=user.id)
    return ack


@router.post("/auth/password/reset", response_model=schemas.Message)
async def reset_password(
    request: Request,
    payload: schemas.PasswordResetConfirm,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> ORJSONResponse:
    """Set a new password from a reset token.

    Unlike the request step, a bad token is reported precisely (404, 409 or
    410) so the frontend can tell the user what to do next.
    """

    throttled = await _guard_token_lookup(request, payload.token, "token")
    if throttled is not None:
        return throttled

    record = resets.find_reset_token(db, payload.token)
    owner = record.user if record is not None else None
    who = {
        "email": owner.email if owner else None,
        "user_id": owner.id if owner else None,
        "token": payload.token,
    }
    resets.audit(db, request, Action.ATTEMPT, **who)
    now = datetime.now(UTC)
    problem = _token_problem(record, now)
    if problem:
        action = Action.EXPIRED if problem == "token_expired" else Action.FAILURE
        resets.audit(db, request, action, error=problem, **who)
        db.commit()
        return await _token_failure(request, payload.token, problem, record)

    owner.password_hash = hash_password(payload.password)
    owner.password_changed_at = owner.last_active_at = now
    clear_failed_logins(owner)
    resets.spend_reset_token(db, record, at=now)
    revoke_user_sessions(db, owner.id, reason="password_reset", timestamp=now)
    resets.audit(db, request, Action.SUCCESS, **who)
    db.commit()
    send_password_reset_confirmation(background_tasks, owner, immediately=True)
    auth_events.info("Password reset completed", "password_reset_completed", user_id=owner.id)
    return no_store_json(_RESET_ACK, status.HTTP_202_ACCEPTED)


@router.get("/auth/password/reset/status", response_model=schemas.PasswordResetTokenStatus)
async def get_password_reset_status(
    request: Request,
    token: str = Query(..., min_length=1, max_length=512),
    db: Session = Depends(get_db),
) -> ORJSONResponse:
    """Tell the reset page whether its token can still be used."""

    token = token.strip()
    throttled = await _guard_token_lookup(request, token, "token_status")
    if throttled is not None:
        return throttled

    record = resets.find_reset_token(db, token)
    problem = _token_problem(record, datetime.now(UTC))
    if problem:
        return await _token_failure(request, token, problem, record)

    auth_events.info(
        "Password reset token validated", "password_reset_token_validated", user_id=record.user_id
    )
    return no_store_json({"status": "valid"})


@router.post("/auth/password/strength", response_model=schemas.PasswordStrengthResponse)
def check_password_strength(
    payload: schemas.PasswordStrengthRequest,
) -> schemas.PasswordStrengthResponse:
    """Score a candidate password against the password policy."""

    return schemas.PasswordStrengthResponse.model_validate(
        validate_password_policy(payload.password)
    )

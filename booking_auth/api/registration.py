"""Account signup and email address verification."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import anyio
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    HTTPException,
    Query,
    Request,
    status,
)
from fastapi.responses import ORJSONResponse, RedirectResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, rate_limit, schemas
from ..auth import get_current_user, get_user, hash_password
from ..config import APP_BASE_URL
from ..database import get_db
from ..logging import auth_events
from ..utils import email_verification as verification
from ..utils.account_notifications import (
    send_existing_signup_notice,
    send_verification_email,
    send_welcome_email,
)
from ..utils.network import get_user_agent
from .deps import no_store, no_store_json, require_json, stored_ip

router = APIRouter()

GENERIC_SIGNUP_MESSAGE = "If the address can be used, you'll receive an email shortly."
_VERIFY_ACK = {"detail": "If the account exists, the verification state was updated."}
_RESEND_ACK = {"detail": "If the account exists, verification instructions will be sent."}
_RESEND_REFUSALS = {
    "cooldown": "We recently sent a verification email. Please check your inbox.",
    "limit": "Daily verification email limit reached. Try again tomorrow.",
}


@router.post(
    "/auth/register",
    response_model=schemas.Message,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_json)],
)
def register(
    user_in: schemas.UserCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> schemas.Message:
    """Create a customer account and mail its verification link and code.

    The reply is identical whether or not the address was already taken; an
    existing owner gets a notice instead of a second account.
    """

    anyio.from_thread.run(rate_limit.registrations.hit, request)
    ack = schemas.Message(detail=GENERIC_SIGNUP_MESSAGE)

    existing = get_user(db, user_in.email)
    if existing is not None:
        auth_events.info(
            "Registration attempted for existing account",
            "registration_existing_account",
            user_id=existing.id,
        )
        send_existing_signup_notice(background_tasks, existing)
        return ack

    user = models.User(
        email=user_in.email.lower(),
        password_hash=hash_password(user_in.password),
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        phone=user_in.phone,
        role=models.UserRole.CUSTOMER.value,
        registration_ip=stored_ip(request),
        registration_user_agent=get_user_agent(request),
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # Lost a race with a concurrent signup for the same address.
        db.rollback()
        return ack
    token, code, _ = verification.issue_verification_token(db, user)
    db.commit()
    send_verification_email(background_tasks, user, token=token, code=code)
    auth_events.info("User registered", "user_registered", user_id=user.id)
    return ack


@router.post(
    "/auth/verification/resend",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=schemas.Message,
)
def resend_verification_email(
    background_tasks: BackgroundTasks,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> schemas.Message:
    """Send the signed-in user a fresh verification email."""

    if current_user.email_verified_at:
        return schemas.Message(detail="Your email address is already verified.")
    blocked = verification.resend_blocked(db, current_user)
    if blocked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=_RESEND_REFUSALS[blocked],
        )

    token, code, _ = verification.issue_verification_token(db, current_user)
    db.commit()
    send_verification_email(background_tasks, current_user, token=token, code=code)
    auth_events.info(
        "Verification email reissued", "verification_email_sent", user_id=current_user.id
    )
    return schemas.Message(detail="We sent you a new verification email.")


@router.post(
    "/auth/verification/request-resend",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=schemas.Message,
)
def request_verification_resend(
    request: Request,
    payload: schemas.VerificationResendRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> schemas.Message | ORJSONResponse:
    """Anonymous resend; the reply never tells whether the address is known."""

    try:
        anyio.from_thread.run(rate_limit.verification_resends.hit, request, payload.email)
    except HTTPException as exc:
        if exc.status_code != status.HTTP_429_TOO_MANY_REQUESTS:
            raise
        auth_events.info(
            "Verification resend skipped",
            "verification_resend_throttled",
            verification_throttle_reason="rate_limit",
        )
        return ORJSONResponse(
            _RESEND_ACK, status_code=exc.status_code, headers=exc.headers
        )

    ack = schemas.Message(**_RESEND_ACK)
    user = get_user(db, payload.email)
    if user is None or user.email_verified_at or not user.is_active:
        auth_events.info(
            "Anonymous verification resend request",
            "verification_resend_requested",
            email_known_user=user is not None,
            email_verified=bool(user and user.email_verified_at),
        )
        return ack

    blocked = verification.resend_blocked(db, user)
    if blocked:
        auth_events.info(
            "Verification resend skipped",
            "verification_resend_throttled",
            user_id=user.id,
            verification_throttle_reason=blocked,
        )
        return ack

    token, code, _ = verification.issue_verification_token(db, user)
    db.commit()
    send_verification_email(
        background_tasks, user, token=token, code=code, immediately=True
    )
    auth_events.info(
        "Verification email reissued anonymously",
        "verification_email_sent",
        user_id=user.id,
        trigger="anonymous_resend",
    )
    return ack


def _check_secret(
    db: Session,
    user: models.User,
    *,
    token: str | None,
    code: str | None,
    now: datetime,
) -> str | None:
    """Return why ``token``/``code`` cannot verify ``user``, or ``None`` on a match."""

    record = verification.latest_token(db, user)
    if record is None or record.consumed_at is not None:
        reason = "token_missing"
    elif record.expires_at < now:
        reason = "token_expired"
    elif verification.token_matches(record, token) or verification.code_matches(record, code):
        return None
    else:
        reason = "secret_mismatch"
    auth_events.warning(
        "Email verification failed",
        "email_verification_failed",
        user_id=user.id,
        verification_failure_reason=reason,
    )
    return reason


def _finish_verification(
    db: Session,
    user: models.User,
    background_tasks: BackgroundTasks,
    *,
    now: datetime,
    channel: str,
) -> None:
    verification.mark_verified(db, user, at=now)
    db.commit()
    send_welcome_email(background_tasks, user)
    auth_events.info(
        "Email verified", "email_verified", user_id=user.id, verification_channel=channel
    )


def _user_by_uid(db: Session, uid: str | None) -> models.User | None:
    if not uid:
        return None
    try:
        return db.get(models.User, uuid.UUID(uid.strip()))
    except ValueError:
        return None


@router.post("/auth/verify", response_model=schemas.Message)
async def verify_email(
    request: Request,
    payload: schemas.EmailVerificationRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> schemas.Message | ORJSONResponse:
    """Confirm an address with the emailed token or six digit code."""

    identifier = payload.uid or payload.email
    await rate_limit.verify_attempts.hit(request, identifier)
    await rate_limit.verify_failures.check(request, identifier)
    ack = no_store_json(_VERIFY_ACK, status.HTTP_202_ACCEPTED)

    user = _user_by_uid(db, payload.uid)
    if user is None and payload.email:
        user = get_user(db, payload.email)
    if user is None or not user.is_active or user.email_verified_at:
        return ack

    now = datetime.now(UTC)
    failure = _check_secret(db, user, token=payload.token, code=payload.code, now=now)
    if failure == "secret_mismatch":
        await rate_limit.verify_failures.hit(request, identifier)
    if failure:
        return ack

    _finish_verification(
        db, user, background_tasks, now=now, channel="code" if payload.code else "token"
    )
    return schemas.Message(detail="Email verified.")


def _to_frontend(error: str | None = None) -> RedirectResponse:
    base = APP_BASE_URL.rstrip("/")
    target = f"{base}/auth/verify-error?error={error}" if error else f"{base}/auth/verify-success"
    return no_store(RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER))


@router.get("/auth/verify-email", response_class=RedirectResponse)
async def verify_email_link(
    request: Request,
    background_tasks: BackgroundTasks,
    uid: str = Query(..., min_length=1, max_length=64),
    token: str = Query(..., min_length=1, max_length=512),
    db: Session = Depends(get_db),
) -> RedirectResponse:
    """Handle the emailed link and send the browser on to the frontend."""

    await rate_limit.verify_attempts.hit(request, uid)
    await rate_limit.verify_failures.check(request, uid)
    user = _user_by_uid(db, uid)
    if user is None or not user.is_active:
        return _to_frontend("invalid_token")
    if user.email_verified_at:
        return _to_frontend("already_verified")

    now = datetime.now(UTC)
    failure = _check_secret(db, user, token=token.strip(), code=None, now=now)
    if failure == "secret_mismatch":
        await rate_limit.verify_failures.hit(request, uid)
    if failure:
        return _to_frontend(failure if failure == "token_expired" else "invalid_token")

    _finish_verification(db, user, background_tasks, now=now, channel="link")
    return _to_frontend()

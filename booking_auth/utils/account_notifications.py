"""Plain-text emails sent to account holders.

Every message goes through :func:`_send`, which resolves SMTP settings,
stamps the common signature and hands delivery to
:func:`~booking_auth.utils.email_sender.dispatch_email`. Anonymous flows
pass ``immediately=True`` so response timing matches whether or not an
email was produced.
"""

from __future__ import annotations

import logging
from datetime import datetime
from urllib.parse import quote_plus

import bleach
from fastapi import BackgroundTasks

from .. import models
from ..config import (
    API_BASE_URL,
    APP_BASE_URL,
    APP_NAME,
    EMAIL_VERIFICATION_TTL_MINUTES,
)
from .email_sender import build_email, dispatch_email, load_smtp_settings

logger = logging.getLogger("booking_auth.account_notifications")


def _frontend(path: str = "") -> str:
    return (APP_BASE_URL.rstrip("/") or "http://localhost:3000") + path


def _verification_link(user: models.User, token: str) -> str:
    path = f"/auth/verify-email?uid={user.id}&token={token}"
    if API_BASE_URL:
        return API_BASE_URL.rstrip("/") + path
    # The frontend forwards this path to the API.
    return _frontend(path)


def _send(
    background_tasks: BackgroundTasks,
    user: models.User,
    *,
    kind: str,
    subject: str,
    paragraphs: list[str],
    immediately: bool = False,
) -> None:
    settings = load_smtp_settings()
    name = bleach.clean(user.first_name or "", tags=[], strip=True).strip()
    greeting = f"Hi {name or 'there'},"
    body = "\n\n".join([greeting, *paragraphs, f"{APP_NAME} Accounts"])
    message = build_email(
        subject=subject,
        from_addr=settings.from_addr,
        to_addr=user.email,
        body=body,
    )
    dispatch_email(
        background_tasks,
        settings=settings,
        message=message,
        logger=logger,
        label=kind.replace("_", " "),
        action_prefix=kind,
        log_extra={"user_id": str(user.id)},
        execute_immediately=immediately,
    )


def send_verification_email(
    background_tasks: BackgroundTasks,
    user: models.User,
    *,
    token: str,
    code: str,
    immediately: bool = False,
) -> None:
    hours = max(1, EMAIL_VERIFICATION_TTL_MINUTES // 60)
    _send(
        background_tasks,
        user,
        kind="verification_email",
        subject=f"Confirm your email for {APP_NAME}",
        paragraphs=[
            f"Welcome aboard! To finish setting up your {APP_NAME} account, "
            f"confirm that {user.email} belongs to you:",
            _verification_link(user, token),
            f"You can also type this verification code: {code}",
            "on the manual confirmation page:",
            _frontend(f"/auth/verify?email={quote_plus(user.email)}"),
            f"Both stop working after {hours} hours. "
            "Didn't sign up? Ignore this message and nothing will happen.",
        ],
        immediately=immediately,
    )


def send_welcome_email(background_tasks: BackgroundTasks, user: models.User) -> None:
    _send(
        background_tasks,
        user,
        kind="welcome_email",
        subject=f"Welcome to {APP_NAME}",
        paragraphs=[
            f"Thanks for confirming your email. Your {APP_NAME} account is ready to use.",
            f"Find your next stay at {_frontend()}",
        ],
    )


def send_existing_signup_notice(
    background_tasks: BackgroundTasks,
    user: models.User,
    *,
    immediately: bool = False,
) -> None:
    """Tell the owner of an address that somebody tried to register it again."""

    _send(
        background_tasks,
        user,
        kind="existing_signup_notice",
        subject=f"You already have a {APP_NAME} account",
        paragraphs=[
            f"A new {APP_NAME} registration was just started with this email address, "
            "but an account already exists for it.",
            f"Sign in here instead: {_frontend('/auth/login')}",
            "If you no longer know your password, that page also lets you reset it. "
            "Not you? No account was created and you don't need to do anything.",
        ],
        immediately=immediately,
    )


def send_password_reset_email(
    background_tasks: BackgroundTasks,
    user: models.User,
    *,
    token: str,
    expires_at: datetime,
    immediately: bool = False,
) -> None:
    minutes = max(1, int((expires_at - datetime.now(expires_at.tzinfo)).total_seconds() // 60))
    _send(
        background_tasks,
        user,
        kind="password_reset_email",
        subject=f"Reset your {APP_NAME} password",
        paragraphs=[
            f"Somebody asked to reset the password of the {APP_NAME} account {user.email}.",
            "Choose a new password here:",
            _frontend(f"/auth/reset-password?token={token}"),
            f"This link works once and expires in {minutes} minutes. "
            "If you didn't ask for it, your current password keeps working.",
        ],
        immediately=immediately,
    )


def send_password_reset_confirmation(
    background_tasks: BackgroundTasks,
    user: models.User,
    *,
    immediately: bool = False,
) -> None:
    _send(
        background_tasks,
        user,
        kind="password_reset_confirmation",
        subject=f"Your {APP_NAME} password was reset",
        paragraphs=[
            "Your password was reset and every device signed in to your account "
            "has been signed out.",
            "Didn't do this? Request another reset right away and let our support "
            f"team know: {_frontend('/auth/forgot-password')}",
        ],
        immediately=immediately,
    )


def send_password_changed_notice(
    background_tasks: BackgroundTasks, user: models.User
) -> None:
    _send(
        background_tasks,
        user,
        kind="password_changed_notice",
        subject=f"Your {APP_NAME} password was changed",
        paragraphs=[
            "The password of your account was changed from your profile and all "
            "sessions were ended.",
            f"Wasn't you? Reset it now: {_frontend('/auth/forgot-password')}",
        ],
    )


def send_account_locked_notice(
    background_tasks: BackgroundTasks,
    user: models.User,
    *,
    locked_until: datetime,
) -> None:
    _send(
        background_tasks,
        user,
        kind="account_locked_notice",
        subject=f"Your {APP_NAME} account was locked",
        paragraphs=[
            "Too many sign-in attempts with a wrong password were made for your "
            f"account, so it is locked until {locked_until:%Y-%m-%d %H:%M} UTC.",
            "If those attempts weren't yours, pick a new password: "
            f"{_frontend('/auth/forgot-password')}",
        ],
    )

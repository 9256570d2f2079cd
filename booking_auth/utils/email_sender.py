"""SMTP delivery for account emails."""

from __future__ import annotations

import logging
import os
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Any

from fastapi import BackgroundTasks

DEFAULT_FROM_ADDRESS = "accounts@booking.example"
EMAIL_DATASET = "booking-auth-api.email"


def _env(name: str, default: Any, kind: type = str) -> Any:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return kind(raw)
    except ValueError:
        return default


@dataclass(slots=True)
class SMTPSettings:
    host: str | None
    port: int = 587
    use_ssl: bool = False
    user: str | None = None
    password: str | None = None
    from_addr: str = DEFAULT_FROM_ADDRESS
    timeout: float = 10.0

    @property
    def transports(self) -> tuple[str, ...]:
        """Connection modes to try in order; SSL falls back to STARTTLS."""

        return ("ssl", "starttls") if self.use_ssl else ("starttls",)


def load_smtp_settings(*, default_from: str = DEFAULT_FROM_ADDRESS) -> SMTPSettings:
    """Read ``SMTP_*`` variables; unparseable numbers keep their defaults."""

    return SMTPSettings(
        host=os.getenv("SMTP_HOST"),
        port=_env("SMTP_PORT", 587, int),
        use_ssl=_env("SMTP_SSL", "").strip().lower() in {"1", "true", "yes", "on"},
        user=os.getenv("SMTP_USER"),
        password=os.getenv("SMTP_PASSWORD"),
        from_addr=_env("SMTP_FROM", default_from),
        timeout=_env("SMTP_TIMEOUT", 10.0, float),
    )


def build_email(
    *,
    subject: str,
    from_addr: str,
    to_addr: str,
    body: str,
    reply_to: str | None = None,
) -> EmailMessage:
    message = EmailMessage()
    headers = {
        "Subject": subject,
        "From": from_addr,
        "To": to_addr,
        "Date": formatdate(localtime=True),
        "Message-ID": make_msgid(domain=from_addr.partition("@")[2] or None),
        # Suppress out-of-office and other auto-replies.
        "Auto-Submitted": "auto-generated",
        "X-Auto-Response-Suppress": "All",
        "Reply-To": reply_to,
    }
    for name, value in headers.items():
        if value:
            message[name] = value
    message.set_content(body)
    return message


@dataclass(slots=True)
class DeliveryLog:
    """Log lines for one email kind, tagged ``<action_prefix>_<outcome>``."""

    logger: logging.Logger
    label: str
    action_prefix: str
    extra: dict[str, Any] = field(default_factory=dict)
    attempts: list[str] = field(default_factory=list)

    def _emit(self, level: int, message: str, outcome: str, *, exc_info: bool = True) -> None:
        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={
                "event_dataset": EMAIL_DATASET,
                "event_action": f"{self.action_prefix}_{outcome}",
                "smtp_attempts": ",".join(self.attempts),
                **self.extra,
            },
        )

    def auth_failed(self) -> None:
        self._emit(logging.ERROR, f"SMTP authentication failed when sending {self.label}", "auth_failed")

    def retrying(self) -> None:
        self._emit(
            logging.WARNING,
            f"SMTP SSL delivery failed for {self.label}, retrying with STARTTLS",
            "ssl_retry",
        )

    def failed(self, *, exc_info: bool = True) -> None:
        self._emit(logging.ERROR, f"Failed to send {self.label}", "failed", exc_info=exc_info)


def _ehlo(server: smtplib.SMTP) -> None:
    if not getattr(server, "local_hostname", None):
        server.local_hostname = "localhost"
    server.ehlo()


def _open(host: str, settings: SMTPSettings, transport: str, context: ssl.SSLContext) -> smtplib.SMTP:
    if transport == "ssl":
        return smtplib.SMTP_SSL(host, settings.port, context=context, timeout=settings.timeout)
    return smtplib.SMTP(host, settings.port, timeout=settings.timeout)


def send_email_via_smtp(
    *,
    settings: SMTPSettings,
    message: EmailMessage,
    log: DeliveryLog,
) -> None:
    """Deliver ``message``; failures are logged, never raised.

    Bad credentials end the attempt at once. Any other SSL failure gets one
    more try over STARTTLS.
    """

    host = settings.host
    if not host:
        log.failed(exc_info=False)
        return
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    for transport in settings.transports:
        log.attempts.append(transport)
        try:
            with _open(host, settings, transport, context) as server:
                _ehlo(server)
                if transport == "starttls" and server.has_extn("starttls"):
                    server.starttls(context=context)
                    _ehlo(server)
                if settings.user and settings.password:
                    server.login(settings.user, settings.password)
                server.send_message(message)
            return
        except smtplib.SMTPAuthenticationError:
            log.auth_failed()
            return
        except (smtplib.SMTPException, OSError):
            if transport == settings.transports[-1]:
                log.failed()
                return
            log.retrying()


def dispatch_email(
    background_tasks: BackgroundTasks,
    *,
    settings: SMTPSettings,
    message: EmailMessage,
    logger: logging.Logger,
    label: str,
    action_prefix: str,
    log_extra: dict[str, Any],
    execute_immediately: bool = False,
) -> None:
    """Deliver inline when ``execute_immediately``, otherwise after the response."""

    if not settings.host:
        logger.error("Email service misconfigured for %s", label, extra=log_extra)
        return
    delivery = {
        "settings": settings,
        "message": message,
        "log": DeliveryLog(logger, label, action_prefix, dict(log_extra)),
    }
    if not execute_immediately:
        background_tasks.add_task(send_email_via_smtp, **delivery)
        return
    logger.info("Sending %s immediately", label, extra=log_extra)
    try:
        send_email_via_smtp(**delivery)
    except Exception:
        logger.exception("Immediate delivery of %s failed", label, extra=log_extra)

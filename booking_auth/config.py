"""Environment-driven configuration for the booking authentication service.

Values are read once at import. Invalid settings raise ``RuntimeError`` so
a misconfigured deployment fails on startup instead of on first use.
"""

from __future__ import annotations

import os
from typing import Final

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}


def _text(name: str, default: str | None = None) -> str | None:
    """Stripped value of ``name``; blank values fall back to ``default``."""

    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _flag(name: str, default: bool) -> bool:
    raw = _text(name)
    return default if raw is None else raw.lower() in _TRUTHY


def _number(name: str, default: int, *, minimum: int = 1) -> int:
    raw = _text(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}")
    return value


def _numbers(name: str, default: str) -> tuple[int, ...]:
    try:
        values = tuple(int(part) for part in _text(name, default).split(",") if part.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a comma-separated list of integers") from exc
    if not values or min(values) <= 0:
        raise RuntimeError(f"{name} must list at least one positive integer")
    return values


def _required(name: str, hint: str | None = None) -> str:
    value = _text(name)
    if value is None:
        raise RuntimeError(hint or f"Missing required environment variable: {name}")
    return value


# Tokens
JWT_ALGORITHM: Final[str] = "HS256"
_secret = _text("JWT_SECRET") or _required(
    "SECRET_KEY", "JWT_SECRET (or SECRET_KEY) is required for HS256 JWTs"
)
JWT_SIGNING_KEY: Final[str] = _secret
JWT_VERIFYING_KEY: Final[str] = _secret
JWT_KID = _text("JWT_KID")
TOKEN_PEPPER: Final[str] = _required("TOKEN_PEPPER")

ACCESS_TOKEN_TTL = _number("ACCESS_TOKEN_TTL", 15 * 60)
ACCESS_TOKEN_LEEWAY = _number("ACCESS_TOKEN_LEEWAY", 60, minimum=0)
ACCESS_TOKEN_EXPIRE_MINUTES = max(1, ACCESS_TOKEN_TTL // 60)

_DAY = 24 * 60 * 60
REFRESH_IDLE_TTL = _number("REFRESH_IDLE_TTL", _DAY)
REFRESH_ABS_TTL = _number("REFRESH_ABS_TTL", 7 * _DAY)
REFRESH_REMEMBER_TTL = _number("REFRESH_REMEMBER_TTL", 30 * _DAY)

# Cookies
REFRESH_COOKIE_NAME = "refresh_token"
CSRF_COOKIE_NAME = _text("CSRF_COOKIE_NAME", "refresh_csrf")
CSRF_HEADER_NAME = _text("CSRF_HEADER_NAME", "X-CSRF")
COOKIE_DOMAIN = _text("COOKIE_DOMAIN")
COOKIE_SECURE = _flag("COOKIE_SECURE", True)
COOKIE_SAMESITE = _text("COOKIE_SAMESITE", "Lax").capitalize()
if COOKIE_SAMESITE not in {"Lax", "Strict", "None"}:
    raise RuntimeError("COOKIE_SAMESITE must be one of: Lax, Strict, None")

# Passwords and lockout
BCRYPT_ROUNDS = _number("BCRYPT_ROUNDS", 12, minimum=4)
PASSWORD_MIN_LENGTH = _number("PASSWORD_MIN_LENGTH", 8)
PASSWORD_REQUIRE_SPECIAL = _flag("PASSWORD_REQUIRE_SPECIAL", False)
MAX_FAILED_LOGIN_ATTEMPTS = _number("MAX_FAILED_LOGIN_ATTEMPTS", 5)
LOCKOUT_DURATIONS_MINUTES = _numbers("LOCKOUT_DURATIONS_MINUTES", "1,5,15,60")

# One-time emails
EMAIL_VERIFICATION_TTL_MINUTES = _number("EMAIL_VERIFICATION_TTL_MINUTES", 24 * 60)
EMAIL_VERIFICATION_RESEND_COOLDOWN = _number("EMAIL_VERIFICATION_RESEND_COOLDOWN", 60, minimum=0)
EMAIL_VERIFICATION_DAILY_LIMIT = _number("EMAIL_VERIFICATION_DAILY_LIMIT", 5)
PASSWORD_RESET_TTL_MINUTES = _number("PASSWORD_RESET_TTL_MINUTES", 60)
PASSWORD_RESET_REQUEST_COOLDOWN = _number("PASSWORD_RESET_REQUEST_COOLDOWN", 60, minimum=0)
PASSWORD_RESET_DAILY_LIMIT = _number("PASSWORD_RESET_DAILY_LIMIT", 5)

# Frontend
APP_NAME = _text("APP_NAME", "Hotel Booking")
APP_BASE_URL = _text("APP_BASE_URL", "http://localhost:3000")
# Public address of this API; when set, emailed verification links hit it directly.
API_BASE_URL = _text("API_BASE_URL")
ALLOWED_ORIGINS = [
    origin.strip() for origin in (_text("ALLOWED_ORIGINS") or "").split(",") if origin.strip()
]


def _header(name: str, default: str) -> str | None:
    """Header override; an empty variable switches the header off."""

    raw = os.getenv(name)
    return default if raw is None else (raw.strip() or None)


# Response headers added by SecureHeadersMiddleware.
_HEADER_VALUES: dict[str, str | None] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Strict-Transport-Security": _header(
        "STRICT_TRANSPORT_SECURITY", "max-age=63072000; includeSubDomains; preload"
    ),
    "Content-Security-Policy": _header(
        "CONTENT_SECURITY_POLICY", "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
    ),
    "Referrer-Policy": _header("REFERRER_POLICY", "no-referrer"),
}
SECURITY_HEADERS: dict[str, str] = {name: value for name, value in _HEADER_VALUES.items() if value}

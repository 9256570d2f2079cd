"""Redaction rules applied to log record attributes."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import parse_qsl, urlencode

MASKED_VALUE = "<redacted>"
MAX_FIELD_LENGTH = 1024

# A key containing any of these is treated as secret.
_SECRET_MARKERS = (
    "password",
    "passwd",
    "secret",
    "token",
    "authorization",
    "cookie",
    "apikey",
    "api_key",
    "api-key",
    "csrf",
    "code",
)
# Secrets that stay recognisable by their first and last characters.
_PARTIAL_MARKERS = ("token", "authorization", "apikey", "api_key", "api-key")
# Matched by a marker above but only ever carry labels.
_LABEL_KEYS = frozenset(
    {
        "auth_method",
        "token_type",
        "http_status_code",
        "error_code",
        "verification_failure_reason",
        "password_reset_failure_reason",
        "password_reset_throttle_reason",
    }
)
_QUERY_KEYS = frozenset({"url_query", "query_string"})
_SECRET_PARAMS = frozenset({"token", "code", "password", "access_token", "refresh_token"})
_EMAIL = re.compile(r"^([^@\s]+)@([^@\s]+\.[^@\s]+)$")


def _partial(value: str) -> str:
    value = value.strip()
    if not value:
        return MASKED_VALUE
    return "***" if len(value) <= 8 else f"{value[:4]}…{value[-4:]}"


def _email(value: str) -> str:
    match = _EMAIL.match(value.strip())
    return f"{match.group(1)[0]}***@{match.group(2)}" if match else value


def _param_name(name: str) -> str:
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return re.sub(r"[^a-zA-Z0-9]+", "_", name).strip("_").lower()


def _query(query: str) -> str:
    try:
        pairs = parse_qsl(query, keep_blank_values=True)
    except ValueError:
        return query
    secret = [bool(value) and _param_name(name) in _SECRET_PARAMS for name, value in pairs]
    if not any(secret):
        return query
    return urlencode(
        [(name, MASKED_VALUE if hide else value) for (name, value), hide in zip(pairs, secret)]
    )


def _text(key: str, value: str) -> str:
    if key in _QUERY_KEYS:
        return _query(value)
    if key not in _LABEL_KEYS and any(marker in key for marker in _SECRET_MARKERS):
        if any(marker in key for marker in _PARTIAL_MARKERS):
            return _partial(value)
        return MASKED_VALUE
    if "email" in key:
        return _email(value)
    if len(value) > MAX_FIELD_LENGTH:
        return value[:MAX_FIELD_LENGTH] + "…[truncated]"
    return value


def sanitize_value(key: Any, value: Any) -> Any:
    """Return ``value`` with anything secret under ``key`` masked.

    Mappings are walked with their own keys; sequences inherit ``key``.
    """

    if isinstance(key, bytes):
        key = key.decode("utf-8", "ignore")
    name = key.lower() if isinstance(key, str) else ""
    if isinstance(value, str):
        return _text(name, value)
    if isinstance(value, dict):
        return {item_key: sanitize_value(item_key, item) for item_key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [sanitize_value(key, item) for item in value]
        return type(value)(items) if type(value) in (tuple, set, frozenset) else items
    return value

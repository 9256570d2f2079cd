"""Filters attached to every handler by :func:`build_logging_config`."""

from __future__ import annotations

import logging

from .context import current_context
from .ip_utils import anonymize_ip
from .privacy import sanitize_value

# LogRecord internals that must reach the formatter untouched.
_PASSTHROUGH = frozenset({"msg", "args", "exc_info", "exc_text", "stack_info"})


class PrivacyFilter(logging.Filter):
    """Redact secrets, tokens and email addresses on the record in place."""

    def filter(self, record: logging.LogRecord) -> bool:
        attrs = record.__dict__
        for key in [key for key in attrs if key not in _PASSTHROUGH]:
            attrs[key] = sanitize_value(key, attrs[key])
        if isinstance(record.args, dict):
            record.args = sanitize_value("args", record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(sanitize_value("arg", arg) for arg in record.args)
        return True


class RequestContextFilter(logging.Filter):
    """Fill ``request_id``, ``user_id`` and ``client_ip`` from the bound request."""

    fields = ("request_id", "user_id", "client_ip")

    def filter(self, record: logging.LogRecord) -> bool:
        context = current_context()
        for name in self.fields:
            if not getattr(record, name, None) and getattr(context, name):
                setattr(record, name, getattr(context, name))
        return True


class IPOverrideFilter(logging.Filter):
    """Per-handler choice between full and truncated client addresses.

    In ``anonymized`` mode the raw address is also stripped off the record
    so no later formatter can leak it.
    """

    def __init__(self, mode: str) -> None:
        super().__init__()
        if mode not in ("raw", "anonymized"):
            raise ValueError(f"Unsupported IP override mode: {mode}")
        self.mode = mode

    def filter(self, record: logging.LogRecord) -> bool:
        context = current_context()
        raw = getattr(record, "client_ip_raw", None) or context.client_ip_raw
        if self.mode == "raw":
            address = raw
        else:
            address = getattr(record, "client_ip_anonymized", None) or context.client_ip_anonymized
            if address is None and raw:
                address = anonymize_ip(raw, mode="anonymized")
            record.__dict__.pop("client_ip_raw", None)
            record.__dict__.pop("client_ip_anonymized", None)
        if address:
            record.client_ip = address
        return True

"""Structured logging: JSON formatting, request context and privacy filters."""

from .config import build_logging_config, configure_logging
from .context import (
    RequestContext,
    bind_request_context,
    current_context,
    reset_request_context,
    set_user_context,
)
from .filters import IPOverrideFilter, PrivacyFilter, RequestContextFilter
from .events import EventLog, audit_events, auth_events
from .formatter import ECSJsonFormatter, FIELD_MAP, SERVICE_NAME
from .handlers import SecureWatchedFileHandler
from .ip_utils import anonymize_ip
from .privacy import sanitize_value

__all__ = [
    "build_logging_config",
    "configure_logging",
    "RequestContext",
    "bind_request_context",
    "current_context",
    "reset_request_context",
    "set_user_context",
    "IPOverrideFilter",
    "PrivacyFilter",
    "RequestContextFilter",
    "ECSJsonFormatter",
    "FIELD_MAP",
    "SERVICE_NAME",
    "EventLog",
    "audit_events",
    "auth_events",
    "SecureWatchedFileHandler",
    "anonymize_ip",
    "sanitize_value",
]

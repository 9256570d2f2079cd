"""``logging.config.dictConfig`` setup driven by ``LOG_*`` variables."""

from __future__ import annotations

import logging
import logging.config
import os
from typing import Any

from .formatter import SERVICE_NAME

_HERE = __name__.rsplit(".", 1)[0]

# Loggers that keep their own name but write through the root handlers.
_PROPAGATED = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "gunicorn.error",
    "gunicorn.access",
    "booking_auth.audit",
)


def _log_files() -> tuple[str | None, str | None]:
    anonymized = os.getenv("LOG_FILE_ANON") or os.getenv("LOG_FILE")
    raw = os.getenv("LOG_FILE_RAW")
    if anonymized and raw and os.path.abspath(anonymized) == os.path.abspath(raw):
        raise ValueError("LOG_FILE_ANON and LOG_FILE_RAW must point to different files")
    return anonymized, raw


def _handler(level: str, formatter: str, ip_filter: str, **target: Any) -> dict[str, Any]:
    return {
        "level": level,
        "formatter": formatter,
        "filters": ["context", "privacy", ip_filter],
        **target,
    }


def _file_target(path: str) -> dict[str, Any]:
    path = os.path.abspath(path)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    return {"class": f"{_HERE}.handlers.SecureWatchedFileHandler", "filename": path, "delay": True}


def build_logging_config() -> dict[str, Any]:
    """Build the ``dictConfig`` mapping.

    stdout always receives anonymized addresses. ``LOG_FILE_ANON`` (or
    ``LOG_FILE``) mirrors it to disk; ``LOG_FILE_RAW`` adds a separate
    file with full client addresses for incident response.
    """

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    json_output = os.getenv("LOG_JSON", "true").strip().lower() in {"1", "true", "yes", "on"}
    formatter = "json" if json_output else "plain"
    anonymized_file, raw_file = _log_files()

    handlers = {
        "stdout_json": _handler(
            level,
            formatter,
            "ip_anonymized",
            **{"class": "logging.StreamHandler", "stream": "ext://sys.stdout"},
        )
    }
    if anonymized_file:
        handlers["file_anon"] = _handler(level, formatter, "ip_anonymized", **_file_target(anonymized_file))
    if raw_file:
        handlers["file_raw"] = _handler(level, formatter, "ip_raw", **_file_target(raw_file))

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": f"{_HERE}.formatter.ECSJsonFormatter", "service_name": SERVICE_NAME},
            "plain": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "filters": {
            "context": {"()": f"{_HERE}.filters.RequestContextFilter"},
            "privacy": {"()": f"{_HERE}.filters.PrivacyFilter"},
            "ip_anonymized": {"()": f"{_HERE}.filters.IPOverrideFilter", "mode": "anonymized"},
            "ip_raw": {"()": f"{_HERE}.filters.IPOverrideFilter", "mode": "raw"},
        },
        "handlers": handlers,
        "root": {"level": level, "handlers": list(handlers)},
        "loggers": {
            name: {"level": "INFO", "handlers": [], "propagate": True} for name in _PROPAGATED
        },
    }


def configure_logging() -> None:
    logging.config.dictConfig(build_logging_config())
    logging.captureWarnings(True)

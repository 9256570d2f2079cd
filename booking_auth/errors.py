"""JSON error replies and their log lines."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("booking_auth.errors")

APP_DATASET = "booking-auth-api.app"
# Parts of a pydantic error that may echo what the client submitted.
_ECHOING_KEYS = frozenset({"input", "ctx", "url"})


def error_reply(
    request: Request,
    status_code: int,
    detail: Any,
    *,
    headers: dict[str, str] | None = None,
    no_store: bool = False,
) -> ORJSONResponse:
    reply = ORJSONResponse({"detail": detail}, status_code=status_code, headers=headers)
    if request_id := getattr(request.state, "request_id", None):
        reply.headers["X-Request-ID"] = request_id
    if no_store:
        reply.headers.update({"Cache-Control": "no-store", "Pragma": "no-cache"})
    return reply


def _report(request: Request, exc: Exception, status_code: int, message: str, action: str, **fields: Any) -> None:
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(
        level,
        message,
        exc_info=exc if level == logging.ERROR else None,
        extra={
            "event_dataset": APP_DATASET,
            "event_action": action,
            "http_request_method": request.method,
            "url_path": request.url.path,
            "http_status_code": status_code,
            "error_type": type(exc).__name__,
            **fields,
        },
    )


async def on_validation_error(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    """422 listing what was wrong, never the submitted values themselves."""

    problems = exc.errors()
    kinds = sorted({problem.get("type", "unknown") for problem in problems})
    _report(
        request,
        exc,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Request validation failed",
        "validation_failed",
        error_message=",".join(kinds)[:128],
        validation_error_count=len(problems),
    )
    scrubbed = [
        {key: value for key, value in problem.items() if key not in _ECHOING_KEYS}
        for problem in problems
    ]
    return error_reply(request, status.HTTP_422_UNPROCESSABLE_ENTITY, scrubbed, no_store=True)


async def on_http_error(request: Request, exc: HTTPException) -> ORJSONResponse:
    _report(
        request,
        exc,
        exc.status_code,
        "HTTP exception raised",
        "http_exception",
        error_message=str(exc.detail)[:256],
    )
    return error_reply(request, exc.status_code, exc.detail, headers=exc.headers)


async def on_database_error(request: Request, exc: SQLAlchemyError) -> ORJSONResponse:
    _report(
        request,
        exc,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database error while handling request",
        "database_error",
    )
    return error_reply(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Temporary database issue. Please retry later.",
        headers={"Retry-After": "600"},
        no_store=True,
    )


async def on_unexpected_error(request: Request, exc: Exception) -> ORJSONResponse:
    _report(
        request,
        exc,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Unhandled exception",
        "unhandled_exception",
    )
    return error_reply(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, on_validation_error)
    app.add_exception_handler(HTTPException, on_http_error)
    app.add_exception_handler(SQLAlchemyError, on_database_error)
    app.add_exception_handler(Exception, on_unexpected_error)

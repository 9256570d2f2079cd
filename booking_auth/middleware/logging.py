"""Access logging and request correlation for every HTTP call."""

from __future__ import annotations

import logging
import os
import random
import time
import traceback
import uuid
from dataclasses import dataclass, field

from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ..logging import anonymize_ip, bind_request_context, reset_request_context
from ..utils.network import get_client_ip

REQUEST_ID_HEADER = "X-Request-ID"
ACCESS_DATASET = "booking-auth-api.access"

logger = logging.getLogger("booking_auth.access")


def _env_fraction(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, default))
    except ValueError:
        return default
    return value if value >= 0 else default


def _request_id(request: Request) -> str:
    """Reuse a sane caller-supplied id, otherwise mint a UUID4."""

    supplied = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if 0 < len(supplied) <= 128 and supplied.isprintable():
        return supplied
    return str(uuid.uuid4())


def _failure_fields(exc: Exception) -> dict[str, str]:
    if isinstance(exc, HTTPException):
        fields = {"error_type": type(exc).__name__}
        if isinstance(exc.detail, str):
            fields["error_message"] = exc.detail
        return fields
    return {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
        "error_stack": "".join(traceback.format_exception(exc)),
    }


@dataclass
class AccessLogPolicy:
    """Which requests get an access log line.

    Errors are always logged and successful probes never are. Slow requests
    bypass sampling; everything else is kept at ``sample_rate``.
    """

    sample_rate: float = 1.0
    slow_after_ns: int = 500_000_000
    quiet_paths: frozenset[str] = frozenset({"/health", "/healthz", "/ready", "/live"})
    rng: random.Random = field(default_factory=random.SystemRandom)

    @classmethod
    def from_env(cls) -> AccessLogPolicy:
        return cls(
            sample_rate=min(1.0, _env_fraction("ACCESS_LOG_SAMPLE", 1.0)),
            slow_after_ns=int(_env_fraction("SLOW_REQUEST_MS", 500.0) * 1_000_000),
        )

    def is_slow(self, duration_ns: int) -> bool:
        return duration_ns >= self.slow_after_ns

    def wants(self, path: str, status_code: int, duration_ns: int) -> bool:
        if status_code >= 400:
            return True
        if path in self.quiet_paths:
            return False
        return self.is_slow(duration_ns) or self.sample_rate >= 1.0 or self.rng.random() < self.sample_rate


class LoggingMiddleware(BaseHTTPMiddleware):
    """Bind request context, echo ``X-Request-ID`` and write one ECS access line."""

    def __init__(self, app: ASGIApp, policy: AccessLogPolicy | None = None) -> None:
        super().__init__(app)
        self.policy = policy or AccessLogPolicy.from_env()

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter_ns()
        request_id = _request_id(request)
        raw_ip = get_client_ip(request)
        logged_ip = anonymize_ip(raw_ip)
        request.state.request_id = request_id
        request.state.client_ip = raw_ip
        request.state.client_ip_anonymized = anonymize_ip(raw_ip, mode="anonymized")
        context = bind_request_context(
            request_id=request_id,
            client_ip=logged_ip,
            client_ip_raw=raw_ip,
            client_ip_anonymized=request.state.client_ip_anonymized,
        )

        status_code = 500
        failure: dict[str, str] = {}
        try:
            response = await call_next(request)
        except Exception as exc:
            status_code = getattr(exc, "status_code", 500)
            failure = _failure_fields(exc)
            raise
        else:
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            elapsed = time.perf_counter_ns() - started
            request.state.event_duration_ns = elapsed
            if self.policy.wants(request.url.path, status_code, elapsed):
                self._write(request, status_code, elapsed, logged_ip, failure)
            reset_request_context(context)

    def _write(
        self,
        request: Request,
        status_code: int,
        elapsed: int,
        client_ip: str | None,
        failure: dict[str, str],
    ) -> None:
        level = (
            logging.ERROR if status_code >= 500
            else logging.WARNING if status_code >= 400
            else logging.INFO
        )
        fields: dict[str, object] = {
            "http_request_method": request.method,
            "url_path": request.url.path,
            "url_query": request.url.query or None,
            "http_status_code": status_code,
            "event_duration": elapsed,
            "client_ip": client_ip,
            "user_agent": request.headers.get("User-Agent") or None,
            "event_dataset": ACCESS_DATASET,
        }
        if self.policy.is_slow(elapsed):
            fields["event_action"] = "slow_request"
        fields.update(failure)
        logger.log(level, "%s %s -> %s", request.method, request.url.path, status_code, extra=fields)


__all__ = ["AccessLogPolicy", "LoggingMiddleware", "REQUEST_ID_HEADER"]

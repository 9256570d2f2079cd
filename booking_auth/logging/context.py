"""The request snapshot log filters read from."""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass, replace

from .ip_utils import anonymize_ip


@dataclass(frozen=True)
class RequestContext:
    request_id: str | None = None
    user_id: str | None = None
    client_ip: str | None = None
    client_ip_raw: str | None = None
    client_ip_anonymized: str | None = None


_EMPTY = RequestContext()
_current: ContextVar[RequestContext] = ContextVar("booking_auth_request", default=_EMPTY)


def current_context() -> RequestContext:
    return _current.get()


def bind_request_context(
    request_id: str,
    client_ip: str | None = None,
    *,
    client_ip_raw: str | None = None,
    client_ip_anonymized: str | None = None,
) -> Token[RequestContext]:
    """Start a fresh snapshot for one request; pass the token to :func:`reset_request_context`.

    ``client_ip`` is the address as it should appear in logs. When the raw
    address is not given separately it is assumed to be the same value.
    """

    raw = client_ip if client_ip_raw is None else client_ip_raw
    if client_ip_anonymized is None and raw:
        client_ip_anonymized = anonymize_ip(raw, mode="anonymized")
    return _current.set(
        RequestContext(
            request_id=request_id,
            client_ip=client_ip,
            client_ip_raw=raw,
            client_ip_anonymized=client_ip_anonymized,
        )
    )


def reset_request_context(token: Token[RequestContext]) -> None:
    _current.reset(token)


def set_user_context(user_id: str | None) -> None:
    """Attach the authenticated user to the current request snapshot."""

    _current.set(replace(_current.get(), user_id=user_id))

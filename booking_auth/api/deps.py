"""Helpers shared by the router modules."""

from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import ORJSONResponse

from ..logging import anonymize_ip
from ..utils.network import get_client_ip

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def no_store(response: Response) -> Response:
    response.headers.update(NO_STORE)
    return response


def no_store_json(
    payload: Mapping[str, Any],
    status_code: int = status.HTTP_200_OK,
    headers: Mapping[str, str] | None = None,
) -> ORJSONResponse:
    return no_store(ORJSONResponse(dict(payload), status_code=status_code, headers=headers))


def no_store_error(status_code: int, detail: str, **headers: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=detail, headers={**NO_STORE, **headers})


def masked_ip(request: Request) -> str | None:
    """Client address in the form used for logs."""

    return anonymize_ip(get_client_ip(request))


def stored_ip(request: Request) -> str | None:
    """Client address in the always-anonymised form persisted on rows."""

    cached = getattr(request.state, "client_ip_anonymized", None)
    if cached is not None:
        return cached
    return anonymize_ip(get_client_ip(request), mode="anonymized")


def require_json(request: Request) -> None:
    """Reject bodies that were not sent as JSON."""

    content_type = request.headers.get("content-type", "")
    if content_type.split(";", 1)[0].strip().lower() != "application/json":
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Content-Type must be application/json",
        )


def page_count(total: int, limit: int) -> int:
    """Return the number of pages needed for ``total`` rows at ``limit`` per page."""

    return (total + limit - 1) // limit if total else 0

"""Client address and user agent helpers."""

from __future__ import annotations

import ipaddress
from typing import Final

from fastapi import Request

_TRUSTED_PROXY_RANGES: Final[
    tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]
] = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
)
_MAX_USER_AGENT_LENGTH = 512


def _normalise_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def _is_trusted_proxy(ip: str) -> bool:
    address = ipaddress.ip_address(ip)
    return any(address in network for network in _TRUSTED_PROXY_RANGES)


def _first_untrusted_hop(forwarded: str) -> str | None:
    hop = None
    for entry in reversed(forwarded.split(",")):
        address = _normalise_ip(entry)
        if address is None:
            break
        hop = address
        if not _is_trusted_proxy(address):
            break
    return hop


def get_client_ip(request: Request) -> str:
    """Return the originating client IP address for a request.

    ``X-Forwarded-For`` is honoured only when the direct peer is a private or
    loopback proxy (or is not an IP at all, as with test transports). The
    header is read from the right and the first hop outside the trusted
    ranges wins; anything to its left was written by the client.
    """

    peer = request.client.host if request.client else None
    peer_ip = _normalise_ip(peer)
    if peer_ip is not None and not _is_trusted_proxy(peer_ip):
        return peer_ip

    if peer is not None:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            nearest = _first_untrusted_hop(forwarded)
            if nearest:
                return nearest

    return peer_ip or "unknown"


def get_user_agent(request: Request) -> str | None:
    """Return the request's user agent trimmed to a storable length."""

    value = (request.headers.get("user-agent") or "").strip()
    return value[:_MAX_USER_AGENT_LENGTH] or None

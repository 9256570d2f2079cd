"""Helpers applying the IP address logging policy."""

from __future__ import annotations

import ipaddress
import os

IP_MODES = frozenset({"full", "anonymized", "off"})
# Prefix kept when anonymizing: the host part of the address is zeroed.
_ANONYMIZED_PREFIX = {4: 24, 6: 64}


def _resolve_mode(mode: str | None) -> str:
    candidate = (mode if mode is not None else os.getenv("LOG_IP_MODE")) or "full"
    candidate = candidate.lower()
    return candidate if candidate in IP_MODES else "full"


def anonymize_ip(ip: str | None, mode: str | None = None) -> str | None:
    """Return ``ip`` formatted for logs or storage according to ``mode``.

    ``full`` keeps the address, ``anonymized`` truncates it to its /24 (IPv4)
    or /64 (IPv6) network and ``off`` drops it entirely. Unparseable values
    collapse to ``"unknown"``.
    """

    resolved = _resolve_mode(mode)
    if resolved == "off":
        return None
    if not ip or ip == "unknown":
        return "unknown"
    try:
        parsed = ipaddress.ip_address(ip)
    except ValueError:
        return "unknown"
    if resolved == "full":
        return str(parsed)
    prefix = _ANONYMIZED_PREFIX[parsed.version]
    return ipaddress.ip_network(f"{parsed}/{prefix}", strict=False).with_prefixlen

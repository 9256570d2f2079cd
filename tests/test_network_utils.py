from starlette.requests import Request

from booking_auth.logging import anonymize_ip
from booking_auth.utils.network import get_client_ip, get_user_agent


def make_request(headers=None, client_host="1.2.3.4"):
    scope = {
        "type": "http",
        "headers": [],
        "client": (client_host, 1234) if client_host else None,
    }
    if headers:
        scope["headers"] = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request(scope)


def test_get_client_ip_prefers_direct_client_host():
    req = make_request(client_host="5.5.5.5")
    assert get_client_ip(req) == "5.5.5.5"


def test_get_client_ip_ignores_forwarded_for_from_public_peer():
    req = make_request(headers={"X-Forwarded-For": "203.0.113.5"}, client_host="5.5.5.5")
    assert get_client_ip(req) == "5.5.5.5"


def test_get_client_ip_uses_x_forwarded_for_for_trusted_proxy():
    req = make_request(headers={"X-Forwarded-For": "203.0.113.5"}, client_host="10.1.1.1")
    assert get_client_ip(req) == "203.0.113.5"


def test_get_client_ip_ignores_client_written_forwarded_entries():
    req = make_request(
        headers={"X-Forwarded-For": "6.6.6.6, 203.0.113.9"},
        client_host="10.0.0.5",
    )
    assert get_client_ip(req) == "203.0.113.9"


def test_get_client_ip_skips_inner_trusted_proxies():
    req = make_request(
        headers={"X-Forwarded-For": "6.6.6.6, 198.51.100.2, 10.0.0.7, 192.168.1.4"},
        client_host="127.0.0.1",
    )
    assert get_client_ip(req) == "198.51.100.2"


def test_get_client_ip_without_peer_is_unknown():
    req = make_request(headers={"X-Forwarded-For": "203.0.113.5"}, client_host=None)
    assert get_client_ip(req) == "unknown"


def test_get_client_ip_handles_invalid_forwarded_values():
    req = make_request(headers={"X-Forwarded-For": "not-an-ip"}, client_host="127.0.0.1")
    assert get_client_ip(req) == "127.0.0.1"


def test_get_user_agent_trims_and_truncates():
    assert get_user_agent(make_request(headers={"User-Agent": "  "})) is None
    long_agent = get_user_agent(make_request(headers={"User-Agent": "A" * 600}))
    assert long_agent == "A" * 512


def test_anonymize_ip_uses_configured_mode(monkeypatch):
    monkeypatch.setenv("LOG_IP_MODE", "anonymized")
    assert anonymize_ip("203.0.113.5") == "203.0.113.0/24"

    monkeypatch.setenv("LOG_IP_MODE", "bogus")
    assert anonymize_ip("203.0.113.5") == "203.0.113.5"

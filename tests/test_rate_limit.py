from types import SimpleNamespace

from booking_auth import rate_limit
from booking_auth.rate_limit import RateLimiter


async def test_rate_limit_respects_forwarded_for_header(client, monkeypatch):
    """Rate limiter should honor X-Forwarded-For from a trusted proxy."""
    monkeypatch.setattr(rate_limit, "general_limiter", RateLimiter(1, 60))

    resp1 = await client.get("/", headers={"X-Forwarded-For": "203.0.113.7"})
    assert resp1.status_code == 200
    assert resp1.headers["X-RateLimit-Remaining"] == "0"

    resp2 = await client.get("/", headers={"X-Forwarded-For": "203.0.113.7"})
    assert resp2.status_code == 429
    assert resp2.json() == {"detail": "Too Many Requests"}
    assert 1 <= int(resp2.headers["Retry-After"]) <= 60

    resp3 = await client.get("/", headers={"X-Forwarded-For": "198.51.100.4"})
    assert resp3.status_code == 200


async def test_login_uses_dedicated_limiter(client, monkeypatch):
    monkeypatch.setattr(rate_limit, "auth_limiter", RateLimiter(1, 60))
    headers = {"X-Forwarded-For": "203.0.113.20"}
    form = {"username": "nobody@example.com", "password": "Whatever123"}

    first = await client.post("/auth/login", data=form, headers=headers)
    assert first.status_code == 401

    second = await client.post("/auth/login", data=form, headers=headers)
    assert second.status_code == 429

    # Other routes still draw from the general budget.
    assert (await client.get("/", headers=headers)).status_code == 200


async def test_rate_limiter_hit_and_miss():
    """First request allowed, second blocked for the same key."""
    limiter = RateLimiter(1, 60)

    allowed, remaining, retry_after = await limiter.is_allowed("1.1.1.1")
    assert allowed
    assert remaining == 0
    assert retry_after == 0.0

    allowed, _, retry_after = await limiter.is_allowed("1.1.1.1")
    assert not allowed
    assert 0 < retry_after <= 60

    allowed, _, _ = await limiter.is_allowed("2.2.2.2")
    assert allowed


async def test_rate_limiter_window_expires():
    limiter = RateLimiter(2, 0)

    for _ in range(3):
        allowed, _, _ = await limiter.is_allowed("key")
        assert allowed


async def test_rate_limiter_forgets_keys_once_their_window_passes(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(rate_limit, "time", SimpleNamespace(monotonic=lambda: clock[0]))
    limiter = RateLimiter(3, 60)

    for n in range(500):
        await limiter.is_allowed(f"token-{n}")
    assert len(limiter.history) == 500

    clock[0] += 61
    await limiter.is_allowed("fresh")

    assert list(limiter.history) == ["fresh"]


async def test_exhausted_reports_without_recording(monkeypatch):
    clock = [50.0]
    monkeypatch.setattr(rate_limit, "time", SimpleNamespace(monotonic=lambda: clock[0]))
    limiter = RateLimiter(2, 60)

    assert await limiter.exhausted("guest@example.com") is None
    assert "guest@example.com" not in limiter.history

    await limiter.is_allowed("guest@example.com")
    assert await limiter.exhausted("guest@example.com") is None
    await limiter.is_allowed("guest@example.com")
    clock[0] += 15

    assert await limiter.exhausted("guest@example.com") == 45
    assert len(limiter.history["guest@example.com"]) == 2

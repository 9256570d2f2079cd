import asyncio
import os
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from .utils.network import get_client_ip

TOO_MANY_REQUESTS = "Too Many Requests"


class RateLimiter:
    """Sliding-window request counter kept in process memory."""

    def __init__(self, limit: int, period: int) -> None:
        self.limit = limit
        self.period = period
        self.history: dict[str, deque] = defaultdict(deque)
        self.lock = asyncio.Lock()
        self._next_sweep = time.monotonic() + period

    def _window(self, key: str, now: float) -> deque | None:
        cutoff = now - self.period
        if now >= self._next_sweep:
            # Drop every key whose newest hit has left the window.
            for stale in [k for k, q in self.history.items() if not q or q[-1] <= cutoff]:
                del self.history[stale]
            self._next_sweep = now + self.period
        q = self.history.get(key)
        if q is None:
            return None
        while q and q[0] <= cutoff:
            q.popleft()
        if not q:
            del self.history[key]
            return None
        return q

    async def is_allowed(self, key: str) -> tuple[bool, int, float]:
        """Record a hit for ``key``; returns ``(allowed, remaining, retry_after)``."""
        now = time.monotonic()
        async with self.lock:
            window = self._window(key, now)
            if len(window or ()) >= self.limit:
                oldest = window[0] if window else now
                return False, 0, self.period - (now - oldest)
            window = self.history[key]
            window.append(now)
            return True, self.limit - len(window), 0.0

    async def exhausted(self, key: str) -> float | None:
        """Seconds until ``key`` may try again, or ``None``; records nothing."""
        now = time.monotonic()
        async with self.lock:
            window = self._window(key, now)
            if len(window or ()) < self.limit:
                return None
            return self.period - (now - (window[0] if window else now))


def _limit_headers(retry_after: float) -> dict[str, str]:
    return {
        "Retry-After": str(max(1, int(retry_after))),
        "X-RateLimit-Remaining": "0",
    }


def too_many_requests(retry_after: float) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=TOO_MANY_REQUESTS,
        headers=_limit_headers(retry_after),
    )


@dataclass
class Throttle:
    """A per-IP budget, optionally paired with one keyed by email, uid or token."""

    ip: RateLimiter
    identifier: RateLimiter | None = None

    async def hit(self, request: Request, identifier: str | None = None) -> int:
        """Spend one slot from each budget; raise 429 when one is exhausted."""
        allowed, remaining, retry_after = await self.ip.is_allowed(
            get_client_ip(request) or "unknown"
        )
        if not allowed:
            raise too_many_requests(retry_after)
        if identifier and self.identifier is not None:
            allowed, left, retry_after = await self.identifier.is_allowed(
                identifier.strip().lower()
            )
            if not allowed:
                raise too_many_requests(retry_after)
            remaining = min(remaining, left)
        return remaining

    async def check(self, request: Request, identifier: str | None = None) -> None:
        """Raise 429 when either budget is already spent, without spending it."""
        retry_after = await self.ip.exhausted(get_client_ip(request) or "unknown")
        if retry_after is None and identifier and self.identifier is not None:
            retry_after = await self.identifier.exhausted(identifier.strip().lower())
        if retry_after is not None:
            raise too_many_requests(retry_after)

    def reset(self) -> None:
        for limiter in (self.ip, self.identifier):
            if limiter is not None:
                limiter.history.clear()


def _env_int(name: str, default: int) -> int:
    value = int(os.getenv(name, str(default)))
    if value < 1:
        raise RuntimeError(f"{name} must be a positive integer")
    return value


def _throttle(prefix: str, ip_limit: int, period: int, identifier_limit: int | None = None) -> Throttle:
    """Build a throttle from ``{prefix}_IP_LIMIT``-style environment overrides."""
    seconds = _env_int(f"{prefix}_PERIOD", period)
    ip = RateLimiter(_env_int(f"{prefix}_IP_LIMIT", ip_limit), seconds)
    if identifier_limit is None:
        return Throttle(ip)
    return Throttle(
        ip,
        RateLimiter(_env_int(f"{prefix}_IDENTIFIER_LIMIT", identifier_limit), seconds),
    )


RATE_PERIOD = _env_int("RATE_PERIOD", 60)
auth_limiter = RateLimiter(_env_int("AUTH_RATE_LIMIT", 100), RATE_PERIOD)
general_limiter = RateLimiter(_env_int("GENERAL_RATE_LIMIT", 1000), RATE_PERIOD)

registrations = _throttle("REGISTRATION", 3, 3600)
verify_attempts = _throttle("VERIFY_ATTEMPT", 5, 300, 5)
verify_failures = _throttle("VERIFY_FAILED", 10, 900, 10)
verification_resends = _throttle("VERIFY_RESEND", 5, 3600, 5)
reset_requests = _throttle("PASSWORD_RESET_REQUEST", 10, 3600, 3)
reset_token_checks = _throttle("PASSWORD_RESET_TOKEN", 60, 60, 10)
reset_failures = _throttle("PASSWORD_RESET_FAILED", 20, 3600, 3)


async def rate_limit(request: Request, call_next):
    """Apply simple rate limiting per client IP, honoring proxy headers."""
    limiter = auth_limiter if request.url.path.endswith("/auth/login") else general_limiter
    allowed, remaining, retry_after = await limiter.is_allowed(get_client_ip(request))
    if not allowed:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": TOO_MANY_REQUESTS},
            headers=_limit_headers(retry_after),
        )
    response = await call_next(request)
    response.headers.setdefault("X-RateLimit-Remaining", str(remaining))
    return response

import os
import re
import tempfile
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from email.message import EmailMessage

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

# The suite runs against a throwaway SQLite file so it needs no external
# services. Configuration is read at import time, so everything must be in
# place before the application modules load.
_DB_DIR = tempfile.mkdtemp(prefix="booking-auth-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["SECRET_KEY"] = (
    "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
)
os.environ["JWT_SECRET"] = os.environ["SECRET_KEY"]
os.environ["TOKEN_PEPPER"] = "unit-test-pepper"
os.environ["SMTP_HOST"] = "smtp.test"
os.environ.pop("SMTP_SSL", None)
os.environ["ALLOWED_ORIGINS"] = "http://allowed.example"
os.environ["APP_BASE_URL"] = "http://frontend.test"
os.environ["COOKIE_SECURE"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["STRICT_TRANSPORT_SECURITY"] = "max-age=63072000; includeSubDomains; preload"
os.environ["AUTH_RATE_LIMIT"] = "1000"
os.environ["GENERAL_RATE_LIMIT"] = "10000"
os.environ["REGISTRATION_IP_LIMIT"] = "1000"
for _prefix in ("VERIFY_ATTEMPT", "VERIFY_FAILED", "VERIFY_RESEND"):
    os.environ[f"{_prefix}_IP_LIMIT"] = "1000"
    os.environ[f"{_prefix}_IDENTIFIER_LIMIT"] = "1000"
os.environ["PASSWORD_RESET_REQUEST_IP_LIMIT"] = "1000"
os.environ["PASSWORD_RESET_REQUEST_IDENTIFIER_LIMIT"] = "1000"
os.environ["PASSWORD_RESET_TOKEN_IP_LIMIT"] = "1000"
os.environ["PASSWORD_RESET_TOKEN_IDENTIFIER_LIMIT"] = "1000"
os.environ["PASSWORD_RESET_FAILED_IP_LIMIT"] = "1000"
os.environ["PASSWORD_RESET_FAILED_IDENTIFIER_LIMIT"] = "1000"
os.environ["EMAIL_VERIFICATION_RESEND_COOLDOWN"] = "60"
os.environ["EMAIL_VERIFICATION_DAILY_LIMIT"] = "5"
os.environ["PASSWORD_RESET_TTL_MINUTES"] = "30"
os.environ["PASSWORD_RESET_REQUEST_COOLDOWN"] = "60"
os.environ["PASSWORD_RESET_DAILY_LIMIT"] = "10"
os.environ["MAX_FAILED_LOGIN_ATTEMPTS"] = "5"
os.environ["LOCKOUT_DURATIONS_MINUTES"] = "1,5,15,60"

from booking_auth import models, rate_limit  # noqa: E402
from booking_auth.api import sessions as sessions_api  # noqa: E402
from booking_auth.database import Base, SessionLocal, engine  # noqa: E402
from booking_auth.main import app  # noqa: E402
from booking_auth.utils import email_sender  # noqa: E402

TEST_PASSWORD = "SunnyStay42"

_client_ctx: ContextVar[httpx.AsyncClient | None] = ContextVar(
    "_client_ctx", default=None
)


def get_client() -> httpx.AsyncClient:
    client = _client_ctx.get()
    if client is None:
        raise RuntimeError("The async client fixture must be used in this test")
    return client


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Give every test a fresh set of in-memory limiter windows."""

    for value in vars(rate_limit).values():
        if isinstance(value, rate_limit.RateLimiter):
            value.history.clear()
        elif isinstance(value, rate_limit.Throttle):
            value.reset()
    sessions_api._failure_attempts.clear()
    yield


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> list[EmailMessage]:
    """Capture outgoing email instead of talking to an SMTP server."""

    sent: list[EmailMessage] = []

    def _capture(*, message, **_delivery):
        sent.append(message)

    monkeypatch.setattr(email_sender, "send_email_via_smtp", _capture)
    return sent


@pytest_asyncio.fixture
async def client(_bootstrap_db):
    transport = ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        token = _client_ctx.set(async_client)
        try:
            yield async_client
        finally:
            _client_ctx.reset(token)


def unique_email(prefix: str = "guest") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def emails_to(outbox: list[EmailMessage], address: str) -> list[EmailMessage]:
    return [message for message in outbox if message["To"] == address]


def extract_token(message: EmailMessage) -> str:
    match = re.search(r"token=([A-Za-z0-9_\-]+)", message.get_content())
    assert match, "no token link in email"
    return match.group(1)


def extract_code(message: EmailMessage) -> str:
    match = re.search(r"verification code: (\d{6})", message.get_content())
    assert match, "no verification code in email"
    return match.group(1)


def load_user(email: str) -> models.User:
    with SessionLocal() as db:
        return db.query(models.User).filter(models.User.email == email.lower()).one()


def update_user(user_id: str | uuid.UUID, **values) -> None:
    """Write ``values`` straight onto the stored user row."""

    with SessionLocal() as db:
        record = db.get(models.User, uuid.UUID(str(user_id)))
        assert record is not None
        for field, value in values.items():
            setattr(record, field, value)
        db.commit()


def mark_user_verified(user_id: str | uuid.UUID) -> None:
    update_user(user_id, email_verified_at=datetime.now(timezone.utc))


async def register_user(
    email: str | None = None,
    password: str = TEST_PASSWORD,
    *,
    first_name: str = "Alice",
    last_name: str = "Guest",
    client: httpx.AsyncClient | None = None,
) -> models.User:
    """Register ``email`` through the API and return the stored user."""

    client_instance = client or get_client()
    email = email or unique_email()
    response = await client_instance.post(
        "/auth/register",
        json={
            "email": email,
            "password": password,
            "firstName": first_name,
            "lastName": last_name,
        },
    )
    assert response.status_code == 202, response.text
    return load_user(email)


async def login(
    email: str,
    password: str = TEST_PASSWORD,
    *,
    remember_me: bool = False,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    client_instance = client or get_client()
    data = {"username": email, "password": password}
    if remember_me:
        data["remember_me"] = "true"
    return await client_instance.post(
        "/auth/login",
        data=data,
        headers={"content-type": "application/x-www-form-urlencoded"},
    )


async def register_and_login(
    *,
    verified: bool = True,
    role: models.UserRole | None = None,
    password: str = TEST_PASSWORD,
    client: httpx.AsyncClient | None = None,
) -> tuple[str, str, str]:
    """Create an account and return its access token, user id and email."""

    client_instance = client or get_client()
    client_instance.cookies.clear()
    user = await register_user(password=password, client=client_instance)
    if verified:
        mark_user_verified(user.id)
    if role is not None:
        update_user(user.id, role=role.value)
    response = await login(user.email, password, client=client_instance)
    assert response.status_code == 200, response.text
    return response.json()["access_token"], str(user.id), user.email


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}

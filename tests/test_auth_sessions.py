import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest

from booking_auth import models
from booking_auth.auth import create_access_token, decode_access_token
from booking_auth.config import (
    ACCESS_TOKEN_TTL,
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    REFRESH_ABS_TTL,
    REFRESH_COOKIE_NAME,
    REFRESH_IDLE_TTL,
    REFRESH_REMEMBER_TTL,
)
from booking_auth.database import SessionLocal

from .conftest import (
    auth_headers,
    get_client,
    load_user,
    login,
    mark_user_verified,
    register_and_login,
    register_user,
    update_user,
)


@dataclass
class SignedIn:
    token: str
    user_id: str
    email: str
    refresh: str
    csrf: str

    @property
    def headers(self) -> dict[str, str]:
        return auth_headers(self.token)


@pytest.fixture
async def signed_in(client) -> SignedIn:
    token, user_id, email = await register_and_login()
    return SignedIn(
        token,
        user_id,
        email,
        client.cookies.get(REFRESH_COOKIE_NAME),
        client.cookies.get(CSRF_COOKIE_NAME),
    )


async def present(refresh: str | None = None, csrf: str | None = None):
    """POST /auth/refresh carrying only the given cookie values."""

    client = get_client()
    client.cookies.clear()
    headers = {}
    if refresh is not None:
        client.cookies.set(REFRESH_COOKIE_NAME, refresh, path="/auth")
    if csrf is not None:
        client.cookies.set(CSRF_COOKIE_NAME, csrf, path="/")
        headers[CSRF_HEADER_NAME] = csrf
    return await client.post("/auth/refresh", headers=headers)


def sessions_of(user_id) -> list[models.RefreshToken]:
    with SessionLocal() as db:
        return (
            db.query(models.RefreshToken)
            .filter(models.RefreshToken.user_id == uuid.UUID(str(user_id)))
            .order_by(models.RefreshToken.issued_at)
            .all()
        )


def age_sessions(user_id, **columns) -> None:
    with SessionLocal() as db:
        db.query(models.RefreshToken).filter(
            models.RefreshToken.user_id == uuid.UUID(str(user_id))
        ).update(columns, synchronize_session=False)
        db.commit()


def assert_rejected(response, status_code: int, detail: str | None = None) -> None:
    assert response.status_code == status_code, response.text
    if detail is not None:
        assert response.json()["detail"] == detail
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["Pragma"] == "no-cache"


# Login


async def test_login_returns_claims_matching_the_account(client):
    user = await register_user()
    mark_user_verified(user.id)

    response = await login(user.email.upper())

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert (body["user_id"], body["role"], body["email_verified"]) == (str(user.id), "customer", True)
    assert 0 < body["expires_in"] <= ACCESS_TOKEN_TTL
    claims = decode_access_token(body["access_token"])
    assert (claims["sub"], claims["role"], claims["email_verified"]) == (str(user.id), "customer", True)
    assert claims["jti"]


async def test_login_cookies_and_cache_headers(client):
    user = await register_user()

    response = await login(user.email)

    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "no-store"
    cookies = {
        header.split("=", 1)[0]: header for header in response.headers.get_list("set-cookie")
    }
    refresh_cookie = cookies[REFRESH_COOKIE_NAME]
    assert "HttpOnly" in refresh_cookie
    assert "Path=/auth" in refresh_cookie
    assert "SameSite=Lax" in refresh_cookie
    assert "HttpOnly" not in cookies[CSRF_COOKIE_NAME]


async def test_unverified_login_is_allowed_and_stamps_activity(client):
    user = await register_user()
    assert user.last_login_at is None

    response = await login(user.email)

    assert response.status_code == 200
    assert response.json()["email_verified"] is False
    stored = load_user(user.email)
    assert stored.last_login_at is not None
    assert abs((stored.last_active_at - stored.last_login_at).total_seconds()) < 1.5


@pytest.mark.parametrize("known_email", [True, False])
async def test_bad_credentials_share_one_answer(client, known_email):
    user = await register_user()
    email = user.email if known_email else "nobody@example.com"

    response = await login(email, "WrongPass99" if known_email else "SunnyStay42")

    assert response.status_code == 401
    assert response.json()["detail"] == "Incorrect email or password"
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_deactivated_account_cannot_login(client):
    user = await register_user()
    update_user(user.id, is_active=False)

    response = await login(user.email)

    assert response.status_code == 403
    assert response.json()["detail"] == "Account is deactivated"


async def test_login_with_empty_password_is_rejected(client):
    response = await client.post(
        "/auth/login", data={"username": "someone@example.com", "password": ""}
    )
    assert response.status_code in {400, 422}


async def test_remember_me_picks_the_longer_lifetime(client):
    user = await register_user()

    await login(user.email)
    await login(user.email, remember_me=True)

    lifetimes = [
        (record.expires_at - record.issued_at).total_seconds() for record in sessions_of(user.id)
    ]
    assert lifetimes == pytest.approx([REFRESH_ABS_TTL, REFRESH_REMEMBER_TTL], abs=5)


# Refresh


async def test_rotation_issues_new_cookies_within_the_family(client, signed_in):
    response = await client.post("/auth/refresh", headers={CSRF_HEADER_NAME: signed_in.csrf})

    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "no-store"
    assert response.json()["access_token"]
    assert client.cookies.get(REFRESH_COOKIE_NAME) != signed_in.refresh
    assert client.cookies.get(CSRF_COOKIE_NAME) != signed_in.csrf

    first, second = sessions_of(signed_in.user_id)
    assert first.rotated_at is not None
    assert second.family_id == first.family_id
    assert second.expires_at == first.expires_at


async def test_replayed_refresh_token_burns_the_family(client, signed_in):
    await client.post("/auth/refresh", headers={CSRF_HEADER_NAME: signed_in.csrf})
    rotated = (client.cookies.get(REFRESH_COOKIE_NAME), client.cookies.get(CSRF_COOKIE_NAME))

    assert_rejected(
        await present(signed_in.refresh, signed_in.csrf), 401, "Refresh token reuse detected"
    )
    assert_rejected(await present(*rotated), 401, "Refresh token revoked")
    assert {record.revocation_reason for record in sessions_of(signed_in.user_id)} == {
        "reuse_detected"
    }


@pytest.mark.parametrize(
    "csrf_header",
    [None, "forged"],
    ids=["missing", "mismatched"],
)
async def test_refresh_requires_matching_csrf(client, signed_in, csrf_header):
    headers = {CSRF_HEADER_NAME: csrf_header} if csrf_header else {}

    response = await client.post("/auth/refresh", headers=headers)

    assert_rejected(response, 403, "Invalid CSRF token")


@pytest.mark.parametrize(
    ("refresh", "detail"),
    [(None, "Missing refresh token"), ("tampered-token", "Invalid refresh token")],
)
async def test_refresh_rejects_absent_or_unknown_cookie(client, signed_in, refresh, detail):
    assert_rejected(await present(refresh, signed_in.csrf), 401, detail)


@pytest.mark.parametrize(
    "column",
    ["last_used_at", "expires_at"],
    ids=["idle", "absolute"],
)
async def test_refresh_enforces_both_timeouts(client, signed_in, column):
    stale = {
        "last_used_at": datetime.now(UTC) - timedelta(seconds=REFRESH_IDLE_TTL + 5),
        "expires_at": datetime.now(UTC) - timedelta(seconds=1),
    }[column]
    age_sessions(signed_in.user_id, **{column: stale})

    response = await client.post("/auth/refresh", headers={CSRF_HEADER_NAME: signed_in.csrf})

    assert_rejected(response, 401, "Refresh token expired")
    assert sessions_of(signed_in.user_id)[0].revocation_reason == "expired"


async def test_refresh_for_deactivated_account_revokes_it(client, signed_in):
    update_user(signed_in.user_id, is_active=False)

    response = await client.post("/auth/refresh", headers={CSRF_HEADER_NAME: signed_in.csrf})

    assert_rejected(response, 401, "Account is deactivated")
    assert all(record.revoked_at is not None for record in sessions_of(signed_in.user_id))


# Logout


async def test_logout_ends_both_tokens(client, signed_in):
    response = await client.post("/auth/logout", headers=signed_in.headers)

    assert response.status_code == 204
    assert client.cookies.get(REFRESH_COOKIE_NAME) is None
    assert client.cookies.get(CSRF_COOKIE_NAME) is None
    assert (await client.get("/users/me", headers=signed_in.headers)).status_code == 401
    assert_rejected(await present(signed_in.refresh, signed_in.csrf), 401)


@pytest.mark.parametrize("headers", [{}, auth_headers("not-a-jwt")], ids=["anonymous", "garbage"])
async def test_logout_without_a_usable_session_still_succeeds(client, headers):
    client.cookies.clear()
    assert (await client.post("/auth/logout", headers=headers)).status_code == 204


async def test_logout_all_revokes_every_device(client, signed_in):
    assert (await login(signed_in.email)).status_code == 200

    response = await client.post("/auth/logout/all", headers=signed_in.headers)

    assert response.status_code == 204
    records = sessions_of(signed_in.user_id)
    assert len(records) == 2
    assert {record.revocation_reason for record in records} == {"logout_all"}
    assert (await client.get("/users/me", headers=signed_in.headers)).status_code == 401


async def test_logout_all_requires_a_bearer_token(client):
    assert (await client.post("/auth/logout/all")).status_code == 401


# Access tokens


async def test_token_older_than_password_change_is_refused(client, signed_in):
    update_user(signed_in.user_id, password_changed_at=datetime.now(UTC) + timedelta(seconds=5))

    response = await client.get("/users/me", headers=signed_in.headers)

    assert response.status_code == 401
    assert response.json()["detail"] == "Could not validate credentials"


async def test_token_of_deactivated_user_is_refused(client, signed_in):
    update_user(signed_in.user_id, is_active=False)
    assert (await client.get("/users/me", headers=signed_in.headers)).status_code == 401


async def test_forged_or_expired_tokens_are_refused(client, signed_in):
    token = signed_in.token
    candidates = [
        token[:-2] + ("A" if token[-2] != "A" else "B") + token[-1],
        create_access_token("00000000-0000-0000-0000-000000000000")[0],
        create_access_token("alice")[0],
        create_access_token(signed_in.user_id, expires_delta=timedelta(minutes=-10))[0],
    ]
    for candidate in candidates:
        response = await client.get("/users/me", headers=auth_headers(candidate))
        assert response.status_code == 401


async def test_last_active_is_bumped_only_when_stale(client, signed_in):
    recent = datetime.now(UTC).replace(microsecond=0)
    update_user(signed_in.user_id, last_active_at=recent)
    assert (await client.get("/users/me", headers=signed_in.headers)).status_code == 200
    assert load_user(signed_in.email).last_active_at == recent

    stale = datetime.now(UTC) - timedelta(minutes=30)
    update_user(signed_in.user_id, last_active_at=stale)
    assert (await client.get("/users/me", headers=signed_in.headers)).status_code == 200
    assert datetime.now(UTC) - load_user(signed_in.email).last_active_at < timedelta(minutes=5)


async def test_cors_preflight_allows_credentials(client):
    response = await client.options(
        "/auth/login",
        headers={"origin": "http://allowed.example", "access-control-request-method": "POST"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-credentials"] == "true"

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

import booking_auth.auth as auth
from booking_auth import models
from booking_auth.config import ACCESS_TOKEN_LEEWAY, ACCESS_TOKEN_TTL, REFRESH_IDLE_TTL
from booking_auth.database import SessionLocal
from booking_auth.refresh_tokens import hash_refresh_token, refresh_token_expired

from .conftest import register_and_login


def bare_request() -> SimpleNamespace:
    return SimpleNamespace(state=SimpleNamespace())


def resolve(token: str | None, *, optional: bool = False):
    dependency = auth.get_optional_user if optional else auth.get_current_user
    request = bare_request()
    with SessionLocal() as db:
        return dependency(request, token=token, db=db), request


def fake_jwt_decode(monkeypatch, result=None):
    seen: dict = {}

    def decode(token, key, algorithms, **kwargs):
        seen.update(kwargs)
        return result or {"sub": "abc123"}

    monkeypatch.setattr(auth.jwt, "decode", decode)
    return seen


# Passwords


@pytest.mark.parametrize("password", ["abcdefghij", "x" * 80, "Zimmer mit Aussicht 7!"])
def test_password_hash_verifies_only_the_original(password):
    hashed = auth.hash_password(password)

    assert hashed != password
    assert auth.verify_password(password, hashed)
    assert not auth.verify_password(password[:-1] + "#", hashed)


def test_password_hashes_are_salted():
    assert auth.hash_password("SunnyStay42") != auth.hash_password("SunnyStay42")


# Access tokens


def test_access_token_claims_and_kid_header(monkeypatch):
    monkeypatch.setattr(auth, "JWT_KID", "key-2025")
    encoded = {}

    def encode(claims, key, algorithm, headers=None):
        encoded.update(claims=claims, headers=headers)
        return "signed"

    monkeypatch.setattr(auth.jwt, "encode", encode)

    token, expires = auth.create_access_token(
        "user-123", role="manager", email_verified=True, scope="read"
    )

    claims = encoded["claims"]
    assert token == "signed"
    assert encoded["headers"] == {"kid": "key-2025"}
    assert (claims["sub"], claims["role"], claims["scope"]) == ("user-123", "manager", "read")
    assert claims["email_verified"] is True
    assert claims["jti"]
    assert claims["exp"] == int(expires.timestamp())
    assert claims["exp"] - claims["iat"] == ACCESS_TOKEN_TTL


def test_access_token_omits_empty_optional_claims():
    claims = auth.decode_access_token(auth.create_access_token("user-9")[0])

    assert "role" not in claims
    assert "scope" not in claims
    assert claims["email_verified"] is False


@pytest.mark.parametrize(
    ("leeway", "options"),
    [(30, {"verify_aud": False, "leeway": 30}), (0, {"verify_aud": False})],
)
def test_decode_forwards_leeway_only_when_configured(monkeypatch, leeway, options):
    monkeypatch.setattr(auth, "ACCESS_TOKEN_LEEWAY", leeway)
    seen = fake_jwt_decode(monkeypatch)

    assert auth.decode_access_token("token-value") == {"sub": "abc123"}
    assert seen == {"options": options}


# Bearer dependencies


async def test_current_user_resolves_and_keeps_claims(client):
    _, user_id, _ = await register_and_login()

    user, request = resolve(auth.create_access_token(user_id)[0])

    assert str(user.id) == user_id
    assert request.state.access_token_payload["sub"] == user_id


async def test_token_expired_beyond_leeway_is_refused(client):
    _, user_id, _ = await register_and_login()
    token, _ = auth.create_access_token(
        user_id, expires_delta=timedelta(seconds=-(ACCESS_TOKEN_LEEWAY + 5))
    )

    with pytest.raises(HTTPException) as exc:
        resolve(token)
    assert exc.value.status_code == 401


@pytest.mark.parametrize("claims", [{}, {"sub": "not-a-uuid"}], ids=["no-sub", "bad-sub"])
@pytest.mark.parametrize("optional", [False, True], ids=["required", "optional"])
def test_unusable_subject_is_refused(monkeypatch, claims, optional):
    monkeypatch.setattr(auth, "decode_access_token", lambda token: claims)

    with pytest.raises(HTTPException) as exc:
        resolve("irrelevant", optional=optional)
    assert exc.value.status_code == 401
    assert exc.value.headers == {"WWW-Authenticate": "Bearer"}


def test_optional_user_without_token_is_anonymous():
    user, _ = resolve(None, optional=True)
    assert user is None


# User lookup


def test_get_user_ignores_blank_email():
    with SessionLocal() as db:
        assert auth.get_user(db, "   \t\n  ") is None


async def test_get_user_is_case_and_space_insensitive(client):
    _, user_id, email = await register_and_login()

    with SessionLocal() as db:
        found = auth.get_user(db, f"  {email.upper()} ")

    assert found is not None
    assert str(found.id) == user_id


# Blacklist


def _claims(minutes: int, sub: str = "service-account") -> dict:
    exp = datetime.now(UTC) + timedelta(minutes=minutes)
    return {"sub": sub, "jti": str(uuid.uuid4()), "exp": int(exp.timestamp())}


def test_blacklist_records_each_jti_once():
    claims = _claims(5)

    with SessionLocal() as db:
        assert not auth.is_token_blacklisted(db, claims["jti"])
        assert auth.blacklist_access_token(db, claims, reason="logout") is True
        db.commit()
        assert auth.is_token_blacklisted(db, claims["jti"])
        assert auth.blacklist_access_token(db, claims, reason="logout") is False
        assert auth.blacklist_access_token(db, {"sub": "x"}, reason="logout") is False
        assert not auth.is_token_blacklisted(db, None)


def test_blacklist_entries_lapse_with_the_token():
    claims = _claims(-1, sub="not-a-uuid")

    with SessionLocal() as db:
        auth.blacklist_access_token(db, claims, reason="logout")
        db.commit()
        assert not auth.is_token_blacklisted(db, claims["jti"])


# Refresh token helpers


def test_refresh_token_digest_is_stable_and_opaque():
    digest = hash_refresh_token("raw-refresh-token")

    assert digest == hash_refresh_token("raw-refresh-token")
    assert digest != hash_refresh_token("raw-refresh-token2")
    assert len(digest) == 64
    assert "raw-refresh-token" not in digest


@pytest.mark.parametrize(
    ("expires_in", "idle_for", "expired"),
    [
        (timedelta(days=5), timedelta(0), False),
        (timedelta(days=5), timedelta(seconds=REFRESH_IDLE_TTL), True),
        (timedelta(0), timedelta(0), True),
    ],
    ids=["fresh", "idle", "absolute"],
)
def test_refresh_token_expiry_rules(expires_in, idle_for, expired):
    now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    record = models.RefreshToken(expires_at=now + expires_in, last_used_at=now - idle_for)

    assert refresh_token_expired(record, now=now) is expired


# Roles


@pytest.mark.parametrize(
    ("role", "allowed"),
    [("admin", True), ("manager", True), ("customer", False), ("unknown", False)],
)
def test_require_role_admits_equal_or_higher_rank(role, allowed):
    manager_only = auth.require_role(models.UserRole.MANAGER)
    user = models.User(role=role)

    if allowed:
        assert manager_only(user=user) is user
    else:
        with pytest.raises(HTTPException) as exc:
            manager_only(user=user)
        assert exc.value.status_code == 403


def test_role_rank_orders_roles():
    assert models.role_rank("customer") < models.role_rank("manager")
    assert models.role_rank(models.UserRole.MANAGER) < models.role_rank("admin")
    assert models.role_rank(None) == 0
    assert models.role_rank("owner") == 0

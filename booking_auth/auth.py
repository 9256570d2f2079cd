"""Password hashing, access tokens and the FastAPI auth dependencies."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any, cast

import bcrypt
import sqlalchemy as sa
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.handlers.bcrypt import _BcryptBackend
from sqlalchemy.orm import Session

from . import models
from .config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ACCESS_TOKEN_LEEWAY,
    ACCESS_TOKEN_TTL,
    BCRYPT_ROUNDS,
    JWT_ALGORITHM,
    JWT_KID,
    JWT_SIGNING_KEY,
    JWT_VERIFYING_KEY,
)
from .database import get_db
from .logging import set_user_context

# passlib 1.7 reads bcrypt.__about__ and runs a self-test that bcrypt>=5
# rejects with ValueError; both are skipped here.
if not hasattr(bcrypt, "__about__"):
    bcrypt.__about__ = SimpleNamespace(__version__=bcrypt.__version__)
_BcryptBackend._workrounds_initialized = True

pwd_context = CryptContext(
    schemes=["bcrypt_sha256"],
    deprecated="auto",
    bcrypt_sha256__rounds=BCRYPT_ROUNDS,
)

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="auth/login",
    description=f"Access token expires in approximately {ACCESS_TOKEN_EXPIRE_MINUTES} minutes",
)
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

# last_active_at is written at most this often per user.
_ACTIVITY_GRANULARITY = timedelta(minutes=10)


def hash_password(password: str) -> str:
    return cast(str, pwd_context.hash(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return cast(bool, pwd_context.verify(plain_password, hashed_password))


def create_access_token(
    subject: str,
    *,
    role: str | None = None,
    email_verified: bool = False,
    scope: str | None = None,
    expires_delta: timedelta | None = None,
) -> tuple[str, datetime]:
    """Sign a JWT for ``subject`` and return it together with its expiry."""

    issued_at = datetime.now(UTC)
    expires_at = issued_at + (expires_delta or timedelta(seconds=ACCESS_TOKEN_TTL))
    claims: dict[str, Any] = {
        "sub": subject,
        "jti": str(uuid.uuid4()),
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
        "email_verified": email_verified,
    }
    claims.update({key: value for key, value in (("role", role), ("scope", scope)) if value})
    token = jwt.encode(
        claims,
        JWT_SIGNING_KEY,
        algorithm=JWT_ALGORITHM,
        headers={"kid": JWT_KID} if JWT_KID else None,
    )
    return token, expires_at


def create_access_token_for(user: models.User) -> tuple[str, datetime]:
    return create_access_token(str(user.id), role=user.role, email_verified=user.email_verified)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify ``token`` and return its claims; ``exp`` gets the configured leeway."""

    options: dict[str, Any] = {"verify_aud": False}
    if ACCESS_TOKEN_LEEWAY:
        options["leeway"] = ACCESS_TOKEN_LEEWAY
    return cast(
        dict[str, Any],
        jwt.decode(token, JWT_VERIFYING_KEY, algorithms=[JWT_ALGORITHM], options=options),
    )


def get_user(db: Session, email: str) -> models.User | None:
    """Case-insensitive lookup by email address."""

    email = email.strip().lower()
    if not email:
        return None
    return cast(
        models.User | None,
        db.query(models.User).filter(sa.func.lower(models.User.email) == email).first(),
    )


def is_token_blacklisted(db: Session, jti: str | None) -> bool:
    if not jti:
        return False
    hit = (
        db.query(models.BlacklistedToken.id)
        .filter(
            models.BlacklistedToken.jti == jti,
            models.BlacklistedToken.expires_at > datetime.now(UTC),
        )
        .first()
    )
    return hit is not None


def blacklist_access_token(db: Session, payload: dict[str, Any], *, reason: str) -> bool:
    """Refuse the token's ``jti`` until the token would have expired anyway.

    Returns ``False`` when the claims carry no ``jti`` or it is already listed.
    """

    jti = payload.get("jti")
    if not jti or db.query(models.BlacklistedToken.id).filter_by(jti=jti).first():
        return False
    try:
        owner: uuid.UUID | None = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        owner = None
    now = datetime.now(UTC)
    exp = payload.get("exp")
    db.add(
        models.BlacklistedToken(
            jti=jti,
            user_id=owner,
            reason=reason,
            expires_at=(
                datetime.fromtimestamp(int(exp), tz=UTC)
                if exp is not None
                else now + timedelta(seconds=ACCESS_TOKEN_TTL)
            ),
            created_at=now,
        )
    )
    return True


def _record_activity(db: Session, user: models.User) -> None:
    now = datetime.now(UTC)
    stale = sa.or_(
        models.User.last_active_at.is_(None),
        models.User.last_active_at <= now - _ACTIVITY_GRANULARITY,
    )
    result = db.execute(
        sa.update(models.User).where(models.User.id == user.id, stale).values(last_active_at=now)
    )
    if result.rowcount:
        db.commit()
        user.last_active_at = now


def _predates_password_change(claims: dict[str, Any], user: models.User) -> bool:
    if user.password_changed_at is None:
        return False
    try:
        issued_at = int(claims.get("iat", 0))
    except (TypeError, ValueError):
        return True
    return issued_at < int(user.password_changed_at.timestamp())


def _authenticate(request: Request, token: str, db: Session) -> models.User:
    """Resolve a bearer token to an active user or raise 401."""

    rejected = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        claims = decode_access_token(token)
        user_id = uuid.UUID(str(claims["sub"]))
    except (JWTError, KeyError, ValueError):
        raise rejected

    if is_token_blacklisted(db, claims.get("jti")):
        raise rejected
    user = cast(models.User | None, db.get(models.User, user_id))
    if user is None or not user.is_active or _predates_password_change(claims, user):
        raise rejected

    set_user_context(str(user.id))
    _record_activity(db, user)
    request.state.access_token_payload = claims
    return user


def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    return _authenticate(request, token, db)


def get_optional_user(
    request: Request,
    token: str | None = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User | None:
    """Like :func:`get_current_user` but ``None`` when no bearer token was sent."""

    return _authenticate(request, token, db) if token else None


def get_current_token_payload(
    request: Request,
    _user: models.User = Depends(get_current_user),
) -> dict[str, Any]:
    return cast(dict[str, Any], request.state.access_token_payload)


def get_verified_user(user: models.User = Depends(get_current_user)) -> models.User:
    if not user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email verification required",
        )
    return user


def require_role(min_role: models.UserRole | str) -> Callable[..., models.User]:
    """Dependency factory admitting verified users ranked at least ``min_role``."""

    required = models.role_rank(min_role)

    def dependency(user: models.User = Depends(get_verified_user)) -> models.User:
        if models.role_rank(user.role) < required:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency

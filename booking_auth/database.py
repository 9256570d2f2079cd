"""Database configuration used across the application."""

import os
import warnings
from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

# A connection string **must** be provided via ``DATABASE_URL`` so deployments
# never rely on an implicit default.
RAW_DATABASE_URL = os.getenv("DATABASE_URL")
APP_ENV = os.getenv("APP_ENV", "production").lower()

if not RAW_DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required")

_POSTGRES_DRIVER = "postgresql+psycopg"
_ACCEPTED_DRIVERS = {"postgresql", _POSTGRES_DRIVER, "sqlite", "sqlite+pysqlite"}


def _normalise_url(url: str) -> URL:
    """Return a URL using the psycopg driver for PostgreSQL connections."""

    candidate = make_url(url)
    if candidate.drivername not in _ACCEPTED_DRIVERS:
        raise RuntimeError(
            "The booking auth service requires a PostgreSQL connection string using "
            "the 'postgresql' or 'postgresql+psycopg' driver (SQLite is accepted "
            "for development and tests)."
        )
    if candidate.drivername.startswith("postgresql"):
        return candidate.set(drivername=_POSTGRES_DRIVER)
    return candidate


def _uses_placeholder(url: URL) -> bool:
    """Return True when the connection URL uses the postgres:postgres pair."""

    return bool(url.username == "postgres" and url.password == "postgres")  # noqa: S105


DATABASE_URL = _normalise_url(RAW_DATABASE_URL)
IS_SQLITE = DATABASE_URL.get_backend_name() == "sqlite"

if APP_ENV == "production" and IS_SQLITE:
    raise RuntimeError("Refusing to start in production with a SQLite database.")
if APP_ENV == "production" and _uses_placeholder(DATABASE_URL):
    raise RuntimeError(
        "Refusing to start in production with the postgres:postgres placeholder in DATABASE_URL."
    )
if _uses_placeholder(DATABASE_URL):
    warnings.warn(
        "DATABASE_URL appears to use the 'postgres:postgres' placeholder. "
        "This is acceptable for local development and tests but must not be used in production.",
        RuntimeWarning,
        stacklevel=2,
    )

_engine_options: dict[str, Any]
if IS_SQLITE:
    # Request handlers run in a threadpool and share the file-backed database.
    _engine_options = {"connect_args": {"check_same_thread": False}}
else:
    _engine_options = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }

engine = create_engine(DATABASE_URL, **_engine_options)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

# Base class for all ORM models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Provide a database session for a single request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

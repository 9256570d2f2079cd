"""ASGI entry point: ``uvicorn booking_auth.main:app``."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from .api import routers
from .config import ALLOWED_ORIGINS, APP_NAME, CSRF_HEADER_NAME, SECURITY_HEADERS
from .database import get_db
from .errors import APP_DATASET, install_error_handlers
from .logging import configure_logging
from .middleware.logging import LoggingMiddleware
from .middleware.security import SecureHeadersMiddleware
from .rate_limit import rate_limit

configure_logging()

logger = logging.getLogger("booking_auth.main")

_REQUIRED_ENV = ("DATABASE_URL", "ALLOWED_ORIGINS", "SMTP_HOST", "TOKEN_PEPPER")


def _environment_problems() -> list[str]:
    """Deployment settings that would leave the service unsafe or unable to mail."""

    secret = (os.getenv("JWT_SECRET") or os.getenv("SECRET_KEY") or "").strip()
    missing = [name for name in _REQUIRED_ENV if not os.getenv(name, "").strip()]
    missing += [] if secret else ["SECRET_KEY"]
    if missing:
        return [f"Missing required environment variables: {', '.join(missing)}"]

    problems = []
    if len(secret) < 32:
        problems.append("SECRET_KEY must be at least 32 characters long")
    if not any(origin.strip() for origin in os.environ["ALLOWED_ORIGINS"].split(",")):
        problems.append("ALLOWED_ORIGINS must contain at least one comma-separated origin")
    return problems


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if problems := _environment_problems():
        raise RuntimeError("; ".join(problems))
    logger.info("Application started", extra={"event_dataset": APP_DATASET, "event_action": "startup"})
    yield


app = FastAPI(title=f"{APP_NAME} Auth API", lifespan=lifespan, default_response_class=ORJSONResponse)

# The last middleware added runs first, so rate limiting sees every request.
app.add_middleware(SecureHeadersMiddleware, headers=SECURITY_HEADERS)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Authorization", "Content-Type", CSRF_HEADER_NAME],
)
app.middleware("http")(rate_limit)
install_error_handlers(app)


@app.get("/")
def banner() -> dict[str, str]:
    return {"message": f"{APP_NAME} Auth API"}


@app.get("/health")
def health(db: Session = Depends(get_db)) -> dict[str, str]:
    """Liveness probe; fails when the database does not answer."""

    db.execute(text("SELECT 1"))
    return {"status": "ok"}


for router in routers:
    app.include_router(router)

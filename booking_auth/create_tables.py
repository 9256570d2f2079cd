"""Utility to create database tables."""

import logging

from .database import engine
from .models import Base

logger = logging.getLogger("booking_auth.create_tables")


def create_tables() -> None:
    """Create all database tables using the SQLAlchemy metadata."""
    Base.metadata.create_all(bind=engine)
    logger.info(
        "Database schema created",
        extra={
            "event_dataset": "booking-auth-api.app",
            "event_action": "schema_created",
            "table_count": len(Base.metadata.tables),
        },
    )


if __name__ == "__main__":
    from .logging import configure_logging

    configure_logging()
    create_tables()

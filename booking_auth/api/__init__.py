"""Router modules for the booking authentication API."""

from .admin import router as admin_router
from .passwords import router as passwords_router
from .registration import router as registration_router
from .sessions import router as sessions_router
from .users import router as users_router

routers = [
    registration_router,
    sessions_router,
    passwords_router,
    users_router,
    admin_router,
]

__all__ = ["routers"]

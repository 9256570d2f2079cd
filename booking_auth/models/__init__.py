"""Domain-specific SQLAlchemy model package."""

from ..database import Base

from .audit import PasswordResetAction, PasswordResetLog
from .auth_tokens import BlacklistedToken, RefreshToken
from .types import UTCDateTime
from .users import ROLE_HIERARCHY, User, UserRole, role_rank
from .verification import VerificationToken, VerificationTokenKind

__all__ = [
    "Base",
    "BlacklistedToken",
    "PasswordResetAction",
    "PasswordResetLog",
    "ROLE_HIERARCHY",
    "RefreshToken",
    "UTCDateTime",
    "User",
    "UserRole",
    "VerificationToken",
    "VerificationTokenKind",
    "role_rank",
]

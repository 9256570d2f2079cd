"""Request and response bodies."""

from datetime import datetime
from typing import Annotated, Any, Generic, Literal, TypeVar
from uuid import UUID

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    model_validator,
)
from pydantic_core import PydanticCustomError

from .models import UserRole
from .utils.password_policy import policy_error_message, validate_password_policy


def _meets_policy(value: str) -> str:
    strength = validate_password_policy(value)
    if not strength.meets_policy:
        raise PydanticCustomError("password_policy", policy_error_message(strength))
    return value


def _person_name(value: str) -> str:
    """Collapse whitespace; 2 to 50 letters and spaces."""

    cleaned = " ".join(value.split())
    if not 2 <= len(cleaned) <= 50:
        raise PydanticCustomError("name_length", "Name must be between 2 and 50 characters")
    if not all(char.isalpha() or char == " " for char in cleaned):
        raise PydanticCustomError("name_characters", "Name can only contain letters and spaces")
    return cleaned


def _stripped(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    return (value.strip() or None) if isinstance(value, str) else value


NewPassword = Annotated[str, Field(max_length=255), AfterValidator(_meets_policy)]
PasswordInput = Annotated[str, StringConstraints(min_length=1, max_length=255)]
PersonName = Annotated[str, AfterValidator(_person_name)]
PhoneNumber = Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^\+?\d{7,15}$")]
LanguageCode = Annotated[str, StringConstraints(min_length=2, max_length=5)]
VerificationCode = Annotated[
    str, StringConstraints(min_length=6, max_length=8, pattern=r"^\d{6,8}$"), BeforeValidator(_stripped)
]
ResetTokenValue = Annotated[str, Field(min_length=1, max_length=512), BeforeValidator(_stripped)]

ItemT = TypeVar("ItemT")


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _CamelInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class _Page(_Strict, Generic[ItemT]):
    items: list[ItemT]
    total: int
    page: int
    limit: int
    pages: int


class Message(_Strict):
    detail: str


# Accounts


class UserCreate(_CamelInput):
    email: EmailStr = Field(..., min_length=1, max_length=255)
    password: Annotated[NewPassword, Field(min_length=1)]
    first_name: PersonName = Field(..., alias="firstName")
    last_name: PersonName = Field(..., alias="lastName")
    phone: Annotated[PhoneNumber | None, BeforeValidator(_blank_to_none)] = None


class UserPreferences(_Strict):
    newsletter: bool = False
    notifications: bool = True
    language: LanguageCode = "en"


class UserRead(BaseModel):
    """The signed-in user's profile; ``pref_*`` columns fold into ``preferences``."""

    id: UUID
    email: EmailStr
    first_name: str
    last_name: str
    phone: str | None = None
    role: UserRole
    is_active: bool = True
    email_verified: bool = False
    preferences: UserPreferences
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _fold_preferences(cls, data: Any) -> Any:
        if isinstance(data, dict) or not hasattr(data, "pref_language"):
            return data
        values = {name: getattr(data, name, None) for name in cls.model_fields}
        values["preferences"] = UserPreferences(
            newsletter=data.pref_newsletter,
            notifications=data.pref_notifications,
            language=data.pref_language,
        )
        return values


class UserUpdate(_CamelInput):
    first_name: PersonName | None = Field(default=None, alias="firstName")
    last_name: PersonName | None = Field(default=None, alias="lastName")
    phone: PhoneNumber | None = None
    preferences: UserPreferences | None = None


class PasswordChange(_CamelInput):
    current_password: PasswordInput = Field(..., alias="currentPassword")
    new_password: NewPassword = Field(..., alias="newPassword")

    @model_validator(mode="after")
    def _must_differ(self) -> "PasswordChange":
        if self.current_password == self.new_password:
            raise PydanticCustomError(
                "password_unchanged", "New password must be different from the current password"
            )
        return self


class AccountDeletion(_Strict):
    password: PasswordInput


class Token(_Strict):
    access_token: str
    token_type: str
    expires_in: int
    user_id: UUID | None = None
    email_verified: bool = False
    role: UserRole | None = None


# Email verification


class EmailVerificationRequest(_Strict):
    """Either identifier (``uid`` or ``email``) with either secret (``token`` or ``code``)."""

    uid: Annotated[str | None, BeforeValidator(_blank_to_none)] = None
    email: EmailStr | None = None
    token: Annotated[str | None, BeforeValidator(_stripped)] = None
    code: VerificationCode | None = None

    @model_validator(mode="after")
    def _identifier_and_secret(self) -> "EmailVerificationRequest":
        if not (self.uid or self.email):
            raise ValueError("identifier_required")
        if not (self.token or self.code):
            raise ValueError("token_or_code_required")
        return self


class VerificationResendRequest(_Strict):
    email: EmailStr


# Password reset


class PasswordResetRequest(_Strict):
    email: EmailStr


class PasswordResetConfirm(_CamelInput):
    token: ResetTokenValue
    password: NewPassword
    confirm_password: str = Field(
        ..., max_length=255, alias="confirmPassword", description="Confirmation of the new password."
    )

    @model_validator(mode="after")
    def _passwords_match(self) -> "PasswordResetConfirm":
        if self.password != self.confirm_password:
            raise PydanticCustomError("password_mismatch", "password_mismatch")
        return self


class PasswordResetTokenStatus(_Strict):
    status: Literal["valid", "invalid", "consumed", "expired", "rate_limited"]
    detail: str | None = None


class PasswordStrengthRequest(_Strict):
    password: str = Field(..., max_length=255)


class PasswordStrengthResponse(BaseModel):
    """Score from 0 to 4 plus the requirements the password still misses."""

    score: int
    level: Literal["weak", "fair", "good", "strong"]
    meets_policy: bool
    feedback: list[str]

    model_config = ConfigDict(from_attributes=True, extra="forbid")


# Administration


class AdminUserRead(UserRead):
    failed_login_attempts: int = 0
    lockout_until: datetime | None = None
    last_active_at: datetime | None = None
    password_changed_at: datetime | None = None
    updated_at: datetime | None = None


class AdminUserUpdate(_Strict):
    role: UserRole | None = None
    is_active: bool | None = None
    first_name: PersonName | None = None
    last_name: PersonName | None = None
    phone: PhoneNumber | None = None


class UserPage(_Page[AdminUserRead]):
    """One page of the admin user listing."""


class PasswordResetLogRead(BaseModel):
    id: UUID
    user_id: UUID | None = None
    email: str | None = None
    action: Literal["request", "attempt", "success", "failure", "expired"]
    ip_address: str | None = None
    user_agent: str | None = None
    token_identifier: str | None = None
    error_message: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, extra="forbid")


class PasswordResetLogPage(_Page[PasswordResetLogRead]):
    """Password reset audit entries, newest first."""

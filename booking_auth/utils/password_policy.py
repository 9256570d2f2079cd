"""Password strength evaluation shared by registration, reset and profile flows."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..config import PASSWORD_MIN_LENGTH, PASSWORD_REQUIRE_SPECIAL

_SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")
_LEVELS = ("weak", "weak", "fair", "good", "strong")


@dataclass(frozen=True, slots=True)
class PasswordPolicy:
    min_length: int = PASSWORD_MIN_LENGTH
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = PASSWORD_REQUIRE_SPECIAL


@dataclass(slots=True)
class PasswordStrength:
    """Outcome of checking a password against a :class:`PasswordPolicy`.

    ``score`` counts satisfied requirements, capped at 4, or at 2 ("fair")
    while the policy is unmet. ``feedback`` lists the requirements still
    missing, in display order.
    """

    score: int
    level: str
    meets_policy: bool
    feedback: list[str] = field(default_factory=list)


DEFAULT_POLICY = PasswordPolicy()


def validate_password_policy(
    password: str, policy: PasswordPolicy | None = None
) -> PasswordStrength:
    policy = policy or DEFAULT_POLICY
    checks = [
        (len(password) >= policy.min_length, f"At least {policy.min_length} characters", True),
        (
            any(char.isupper() for char in password),
            "One uppercase letter",
            policy.require_uppercase,
        ),
        (
            any(char.islower() for char in password),
            "One lowercase letter",
            policy.require_lowercase,
        ),
        (any(char.isdigit() for char in password), "One number", policy.require_digit),
        (
            bool(_SPECIAL_CHARACTERS.search(password)),
            "One special character",
            policy.require_special,
        ),
    ]

    met = sum(1 for passed, _, _ in checks if passed)
    feedback = [message for passed, message, required in checks if required and not passed]
    meets_policy = all(passed for passed, _, required in checks if required)
    score = min(4 if meets_policy else 2, met)
    return PasswordStrength(
        score=score,
        level=_LEVELS[score],
        meets_policy=meets_policy,
        feedback=feedback,
    )


def policy_error_message(strength: PasswordStrength) -> str:
    """Render the unmet requirements as a single validation message."""

    return "Password must contain: " + ", ".join(
        item[0].lower() + item[1:] for item in strength.feedback
    )

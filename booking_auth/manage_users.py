"""Account administration from the shell.

    python -m booking_auth.manage_users create-admin ops@hotel.example
    python -m booking_auth.manage_users unlock guest@example.com
    python -m booking_auth.manage_users set-role guest@example.com manager
"""

import argparse
import getpass
import sys
from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from . import models
from .auth import get_user, hash_password
from .database import SessionLocal
from .logging import audit_events
from .utils.account_lockout import unlock_account
from .utils.password_policy import policy_error_message, validate_password_policy


class CommandError(Exception):
    """A command that cannot complete; reported on stderr with exit status 1."""


def _require_user(db: Session, email: str) -> models.User:
    user = get_user(db, email)
    if user is None:
        raise CommandError(f"No account found for {email}")
    return user


def create_admin(
    db: Session,
    *,
    email: str,
    password: str | None,
    first_name: str,
    last_name: str,
) -> models.User:
    """Create a verified administrator, or promote the existing account."""

    now = datetime.now(UTC)
    user = get_user(db, email)
    if user is not None:
        user.role = models.UserRole.ADMIN.value
        user.is_active = True
        user.email_verified_at = user.email_verified_at or now
        db.commit()
        audit_events.info("Existing account promoted to admin", "cli_admin_promoted", target_user_id=user.id)
        return user

    if not password:
        raise CommandError("A password is required to create a new admin account")
    strength = validate_password_policy(password)
    if not strength.meets_policy:
        raise CommandError(policy_error_message(strength))

    user = models.User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=models.UserRole.ADMIN.value,
        email_verified_at=now,
    )
    db.add(user)
    db.commit()
    audit_events.info("Admin account created", "cli_admin_created", target_user_id=user.id)
    return user


def unlock(db: Session, *, email: str) -> bool:
    user = _require_user(db, email)
    was_locked = unlock_account(user)
    db.commit()
    audit_events.info(
        "Account unlocked from command line",
        "cli_account_unlocked",
        target_user_id=user.id,
        account_was_locked=was_locked,
    )
    return was_locked


def set_role(db: Session, *, email: str, role: str) -> models.User:
    try:
        new_role = models.UserRole(role)
    except ValueError as exc:
        raise CommandError(f"Unknown role: {role}") from exc
    user = _require_user(db, email)
    user.role = new_role.value
    db.commit()
    audit_events.info(
        "Role changed from command line",
        "cli_role_changed",
        target_user_id=user.id,
        user_role=new_role.value,
    )
    return user


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage booking service accounts")
    commands = parser.add_subparsers(dest="command", required=True)

    admin = commands.add_parser("create-admin", help="Create or promote an admin account")
    admin.add_argument("email")
    admin.add_argument("--first-name", default="Site")
    admin.add_argument("--last-name", default="Admin")
    admin.add_argument("--password", help="Password for a new account (prompted when omitted)")

    unlock_cmd = commands.add_parser("unlock", help="Clear a lockout after failed sign-ins")
    unlock_cmd.add_argument("email")

    role_cmd = commands.add_parser("set-role", help="Change an account's role")
    role_cmd.add_argument("email")
    role_cmd.add_argument("role", choices=[role.value for role in models.UserRole])
    return parser


def _run(db: Session, args: argparse.Namespace) -> str:
    if args.command == "unlock":
        return "Account unlocked" if unlock(db, email=args.email) else "Account was not locked"
    if args.command == "set-role":
        user = set_role(db, email=args.email, role=args.role)
        return f"{user.email} is now {user.role}"
    password = args.password
    if password is None and get_user(db, args.email) is None:
        password = getpass.getpass("Password: ")
    user = create_admin(
        db,
        email=args.email,
        password=password,
        first_name=args.first_name,
        last_name=args.last_name,
    )
    return f"Admin ready: {user.email}"


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    with SessionLocal() as db:
        try:
            print(_run(db, args))
        except CommandError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    from .logging import configure_logging

    configure_logging()
    sys.exit(main())

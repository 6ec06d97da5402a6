# Overview: Service-layer operations for accounts; password hashing, user creation, erasure.

"""
Account Service

WHY: Every order, grant and borrow must be attributable to a user. Uses
bcrypt for password hashing; session tokens live in session_service.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters, at least one letter and one digit
- Erasure anonymizes the account instead of deleting it, because orders
  must keep their purchaser reference
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Address, Notification, User
from ..models.accounts import ROLE_USER, VALID_ROLES
from ..validation import NotFoundError, StateConflict, ValidationError, require_text
from . import entitlement_service
from .membership_service import get_plan_by_name
from .session_service import revoke_all_user_sessions
from bookstack.time_utils import utcnow


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet strength requirements."""
    code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    name: str,
    email: str,
    password: str,
    *,
    role: str = ROLE_USER,
    plan_name: str | None = None,
) -> User:
    """
    Create an account. Commits.

    Raises:
        ValidationError: bad name/email/role or weak password
        StateConflict: email already registered
        NotFoundError: unknown plan name
    """
    name = require_text(name, "name", max_length=128)
    email = require_text(email, "email").lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("email is not a valid address")
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(sorted(VALID_ROLES))}")

    if db.session.query(User).filter_by(email=email).first() is not None:
        raise StateConflict("Email already registered", code="EMAIL_TAKEN")

    plan = None
    if plan_name:
        plan = get_plan_by_name(plan_name)
        if plan is None:
            raise NotFoundError(f"Membership plan '{plan_name}' not found")

    now = utcnow()
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
        membership_plan=plan,
        enrollment_start_date=now if plan is not None else None,
        created_at=now,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for valid credentials, else None."""
    if not email or not password:
        return None
    user = db.session.query(User).filter_by(email=str(email).strip().lower()).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def erase_user(user_id: int) -> dict:
    """
    Account erasure.

    Hard-deletes entitlement history and notifications, revokes sessions,
    and anonymizes the user row. Commits.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    entitlements = entitlement_service.erase_for_user(user.id)
    notifications = (
        db.session.query(Notification).filter_by(user_id=user.id).delete(synchronize_session=False)
    )
    user.name = "Erased user"
    user.email = f"erased-{user.id}@invalid.local"
    user.is_active = False
    user.password_hash = "!"
    db.session.commit()

    sessions = revoke_all_user_sessions(user.id, reason="Account erased")
    return {
        "user_id": user.id,
        "entitlements_deleted": entitlements,
        "notifications_deleted": notifications,
        "sessions_revoked": sessions,
    }


def add_address(user_id: int, payload: dict) -> Address:
    if not isinstance(payload, dict):
        raise ValidationError("Address is required")
    address = Address(
        user_id=user_id,
        line1=require_text(payload.get("line1"), "line1"),
        city=require_text(payload.get("city"), "city", max_length=128),
        postal_code=(str(payload.get("postal_code")).strip()[:32] if payload.get("postal_code") else None),
        country=(str(payload.get("country")).strip()[:64] if payload.get("country") else None),
    )
    db.session.add(address)
    db.session.commit()
    return address


def list_addresses(user_id: int) -> list[Address]:
    return db.session.query(Address).filter_by(user_id=user_id).order_by(Address.id.asc()).all()

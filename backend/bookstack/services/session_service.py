# Overview: Service-layer operations for session tokens; creation, validation, revocation.

"""
Session Token Management Service

WHY: Bearer tokens with absolute timeout and revocation. Tokens are
cryptographically secure, hashed in the database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout of SESSION_TTL_HOURS
- Revocable on logout, deactivation or account erasure
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from bookstack.time_utils import utcnow


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 for storage. Tokens are already high-entropy, so a slow hash
    like bcrypt adds nothing here.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create a session for a user.

    Returns (session_record, plaintext_token). The client receives the
    plaintext token, the database stores only the hash.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=current_app.config["SESSION_TTL_HOURS"]),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Return the user behind a valid token, or None if the token is unknown,
    revoked, expired, or belongs to a deactivated account.

    Updates last_used_at on success.
    """
    now = utcnow()
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None or session.expires_at < now:
        return None

    user = session.user
    if user is None or not user.is_active:
        session.is_revoked = True
        session.revoked_at = now
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str) -> bool:
    """Returns True if a live session was revoked."""
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """
    Revoke every live session for a user; returns the count.
    `reason` is accepted for call-site readability and logged.
    """
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
    db.session.commit()
    if sessions:
        current_app.logger.info("Revoked %s session(s) for user %s: %s", len(sessions), user_id, reason)
    return len(sessions)

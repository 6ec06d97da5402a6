# Overview: In-app notifications; Notifier interface and the database-backed default.

from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Notification, User
from ..validation import NotFoundError

logger = logging.getLogger(__name__)


CATEGORY_ORDER = "ORDER"
CATEGORY_BORROW = "BORROW"
CATEGORY_RETURN = "RETURN"
CATEGORY_READLIST = "READLIST"
CATEGORY_SYSTEM = "SYSTEM"
VALID_CATEGORIES = {CATEGORY_ORDER, CATEGORY_BORROW, CATEGORY_RETURN, CATEGORY_READLIST, CATEGORY_SYSTEM}


class Notifier(Protocol):
    """Delivers user-facing notifications. Must not raise into callers."""

    def notify(
        self,
        recipient_user_id: int,
        category: str,
        message: str,
        *,
        title_id: Optional[int] = None,
        target_id: Optional[str] = None,
    ) -> None:
        ...

    def notify_role(self, role: str, message: str, *, category: str = CATEGORY_SYSTEM) -> None:
        ...


class DatabaseNotifier:
    """
    Writes Notification rows in their own commit.

    Always called after the business transaction has committed, so a
    failure here never affects the state change that triggered it.
    """

    def notify(
        self,
        recipient_user_id: int,
        category: str,
        message: str,
        *,
        title_id: Optional[int] = None,
        target_id: Optional[str] = None,
    ) -> None:
        try:
            db.session.add(
                Notification(
                    user_id=recipient_user_id,
                    category=category,
                    message=message[:500],
                    title_id=title_id,
                    target_id=target_id,
                )
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Failed to store notification for user %s", recipient_user_id)

    def notify_role(self, role: str, message: str, *, category: str = CATEGORY_SYSTEM) -> None:
        try:
            recipients = (
                db.session.query(User.id)
                .filter(User.role == role, User.is_active.is_(True))
                .all()
            )
            for (user_id,) in recipients:
                db.session.add(Notification(user_id=user_id, category=category, message=message[:500]))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Failed to store notifications for role %s", role)


def list_for_user(user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = db.session.query(Notification).filter_by(user_id=user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(notification_id: int, user_id: int) -> Notification:
    """Mark one of the user's own notifications as read."""
    notification = db.session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("Notification not found", details={"notification_id": notification_id})
    if not notification.is_read:
        notification.is_read = True
        db.session.commit()
    return notification


def mark_all_read(user_id: int) -> int:
    updated = (
        db.session.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session="fetch")
    )
    db.session.commit()
    return updated

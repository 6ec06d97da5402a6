from __future__ import annotations

from ..extensions import db
from bookstack.time_utils import to_utc_z


class Notification(db.Model):
    """In-app notification written by the default database notifier."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # ORDER, BORROW, RETURN, READLIST, SYSTEM
    category = db.Column(db.String(16), nullable=False, index=True)
    message = db.Column(db.String(500), nullable=False)

    title_id = db.Column(db.Integer, db.ForeignKey("titles.id"), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "category": self.category,
            "message": self.message,
            "title_id": self.title_id,
            "target_id": self.target_id,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }


class ActivityLog(db.Model):
    """
    Append-only audit trail of state changes (order transitions, readlist
    grants, borrows). Rows are never updated or deleted.
    """
    __tablename__ = "activity_log"
    __table_args__ = (
        db.Index("ix_activity_entity", "entity_type", "entity_id"),
        db.Index("ix_activity_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(500), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }

from __future__ import annotations

from ..extensions import db
from bookstack.time_utils import to_utc_z


ENTITLEMENT_ACTIVE = "ACTIVE"
ENTITLEMENT_COMPLETED = "COMPLETED"
ENTITLEMENT_EXPIRED = "EXPIRED"
VALID_ENTITLEMENT_STATUSES = {ENTITLEMENT_ACTIVE, ENTITLEMENT_COMPLETED, ENTITLEMENT_EXPIRED}

PROVENANCE_MANUAL = "MANUAL"
PROVENANCE_ORDER = "ORDER"


class EntitlementRecord(db.Model):
    """
    Time-boxed reading access to one title for one user.

    HISTORY: several rows may exist per (user, title); the most recently
    granted row is authoritative (see entitlement_service.latest_for).

    PLACEHOLDERS: rows with expires_at NULL are access promised at checkout
    but not yet granted. They never authorize reading and are purged when
    the order is cancelled or returned.
    """
    __tablename__ = "entitlements"
    __table_args__ = (
        db.Index("ix_entitlements_user_title_granted", "user_id", "title_id", "granted_at"),
        db.Index("ix_entitlements_status_expires", "status", "expires_at"),
        db.Index("ix_entitlements_user_granted", "user_id", "granted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    title_id = db.Column(db.Integer, db.ForeignKey("titles.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ENTITLEMENT_ACTIVE)
    granted_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    provenance = db.Column(db.String(16), nullable=False, default=PROVENANCE_MANUAL)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    # Reading progress
    progress_cursor = db.Column(db.Integer, nullable=False, default=1)
    bookmarks = db.Column(db.JSON, nullable=False, default=list)

    title = db.relationship("Title")

    @property
    def is_placeholder(self) -> bool:
        return self.expires_at is None

    def is_live(self, now) -> bool:
        return (
            self.status == ENTITLEMENT_ACTIVE
            and self.expires_at is not None
            and self.expires_at > now
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title_id": self.title_id,
            "status": self.status,
            "granted_at": to_utc_z(self.granted_at),
            "expires_at": to_utc_z(self.expires_at),
            "completed_at": to_utc_z(self.completed_at),
            "provenance": self.provenance,
            "order_id": self.order_id,
            "progress_cursor": self.progress_cursor,
            "bookmarks": list(self.bookmarks or []),
        }

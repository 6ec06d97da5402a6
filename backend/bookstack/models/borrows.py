from __future__ import annotations

from ..extensions import db
from bookstack.time_utils import to_utc_z


BORROW_BORROWED = "BORROWED"
BORROW_RETURN_REQUESTED = "RETURN_REQUESTED"
BORROW_RETURNED = "RETURNED"
OPEN_BORROW_STATUSES = (BORROW_BORROWED, BORROW_RETURN_REQUESTED)


class Borrow(db.Model):
    """
    Legacy direct borrow of a physical copy.

    Issuing takes one copy from the title's stock ledger; accepting the
    return puts it back. Overdue days accrue a fine that must be paid
    before a return can be requested.
    """
    __tablename__ = "borrows"
    __table_args__ = (
        db.Index("ix_borrows_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    title_id = db.Column(db.Integer, db.ForeignKey("titles.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default=BORROW_BORROWED)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    due_at = db.Column(db.DateTime(timezone=True), nullable=False)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    fine_cents = db.Column(db.Integer, nullable=False, default=0)
    fine_paid = db.Column(db.Boolean, nullable=False, default=False)
    renewed_count = db.Column(db.Integer, nullable=False, default=0)

    title = db.relationship("Title")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title_id": self.title_id,
            "status": self.status,
            "issued_at": to_utc_z(self.issued_at),
            "due_at": to_utc_z(self.due_at),
            "returned_at": to_utc_z(self.returned_at),
            "fine_cents": self.fine_cents,
            "fine_paid": self.fine_paid,
            "renewed_count": self.renewed_count,
        }

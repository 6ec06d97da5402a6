from __future__ import annotations

from ..extensions import db
from bookstack.time_utils import to_utc_z


AVAILABILITY_AVAILABLE = "AVAILABLE"
AVAILABILITY_OUT_OF_STOCK = "OUT_OF_STOCK"
AVAILABILITY_ARCHIVED = "ARCHIVED"
AVAILABILITY_DAMAGED = "DAMAGED"
VALID_AVAILABILITY = {
    AVAILABILITY_AVAILABLE,
    AVAILABILITY_OUT_OF_STOCK,
    AVAILABILITY_ARCHIVED,
    AVAILABILITY_DAMAGED,
}

PLAN_TIER_FREE = "FREE"
PLAN_TIER_PAID = "PAID"


class Title(db.Model):
    """
    Catalog title with its embedded stock ledger.

    STOCK LEDGER:
    - copies_available is a plain counter, mutated only through
      stock_service (atomic UPDATE expressions, never read-then-overwrite)
    - availability_status == OUT_OF_STOCK <=> copies_available == 0;
      every mutation re-derives the status in the same statement
    """
    __tablename__ = "titles"
    __table_args__ = (
        db.CheckConstraint("copies_available >= 0", name="ck_titles_copies_non_negative"),
        db.Index("ix_titles_availability", "availability_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    author = db.Column(db.String(255), nullable=False)
    isbn = db.Column(db.String(32), nullable=True, unique=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Restricted ("premium") collection: readable only on plans with the capability
    is_restricted = db.Column(db.Boolean, nullable=False, default=False)

    # Blob store key of the readable PDF
    content_key = db.Column(db.String(512), nullable=True)

    copies_available = db.Column(db.Integer, nullable=False, default=0)
    availability_status = db.Column(db.String(16), nullable=False, default=AVAILABILITY_OUT_OF_STOCK)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Title id={self.id} title={self.title!r} copies={self.copies_available}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "price_cents": self.price_cents,
            "is_restricted": self.is_restricted,
            "has_content": bool(self.content_key),
            "copies_available": self.copies_available,
            "availability_status": self.availability_status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MembershipPlan(db.Model):
    """
    Membership plan reference data (basic / standard / premium).

    Read-only for the entitlement engine: consulted by the quota engine,
    the access gate, order delivery (access duration) and checkout (fees).
    """
    __tablename__ = "membership_plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False, unique=True)
    display_name = db.Column(db.String(64), nullable=False)

    # FREE plans use calendar-month quota windows, PAID plans anniversary windows
    tier = db.Column(db.String(8), nullable=False, default=PLAN_TIER_FREE)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    monthly_grant_limit = db.Column(db.Integer, nullable=False, default=0)
    access_duration_days = db.Column(db.Integer, nullable=False, default=14)
    delivery_fee_waived = db.Column(db.Boolean, nullable=False, default=False)
    can_access_restricted = db.Column(db.Boolean, nullable=False, default=False)

    # Legacy direct-borrow limits
    borrow_limit = db.Column(db.Integer, nullable=False, default=3)
    borrow_duration_days = db.Column(db.Integer, nullable=False, default=7)
    can_renew_borrows = db.Column(db.Boolean, nullable=False, default=False)

    description = db.Column(db.String(255), nullable=True)

    @property
    def is_free_tier(self) -> bool:
        return self.tier == PLAN_TIER_FREE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "tier": self.tier,
            "price_cents": self.price_cents,
            "monthly_grant_limit": self.monthly_grant_limit,
            "access_duration_days": self.access_duration_days,
            "delivery_fee_waived": self.delivery_fee_waived,
            "can_access_restricted": self.can_access_restricted,
            "borrow_limit": self.borrow_limit,
            "borrow_duration_days": self.borrow_duration_days,
            "can_renew_borrows": self.can_renew_borrows,
            "description": self.description,
        }

from __future__ import annotations

from ..extensions import db
from bookstack.time_utils import to_utc_z


class Order(db.Model):
    """
    Purchase order aggregate.

    Owned exclusively by order_service. Items are immutable after creation:
    unit prices are snapshotted at checkout and never recomputed.

    CONCURRENCY: version_id_col gives optimistic locking; a concurrent
    transition on the same order raises StaleDataError and is retried.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=False)

    status = db.Column(db.String(24), nullable=False, default="PENDING", index=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    # Stubbed: no settlement happens for this method
    payment_method = db.Column(db.String(32), nullable=False, default="CASH_ON_DELIVERY")

    estimated_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_reason = db.Column(db.String(255), nullable=True)

    # Refund bank details, submitted by the purchaser once a refund is initiated
    refund_account_name = db.Column(db.String(128), nullable=True)
    refund_bank_name = db.Column(db.String(128), nullable=True)
    refund_account_number = db.Column(db.String(64), nullable=True)
    refund_routing_code = db.Column(db.String(32), nullable=True)
    refund_submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    address = db.relationship("Address")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def reference(self) -> str:
        """Short human-readable order reference used in messages."""
        return f"#{self.id:08d}"

    def refund_details(self) -> dict | None:
        if not self.refund_submitted_at:
            return None
        return {
            "account_name": self.refund_account_name,
            "bank_name": self.refund_bank_name,
            "account_number": self.refund_account_number,
            "routing_code": self.refund_routing_code,
            "submitted_at": to_utc_z(self.refund_submitted_at),
        }

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "reference": self.reference,
            "user_id": self.user_id,
            "address_id": self.address_id,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "estimated_delivery_at": to_utc_z(self.estimated_delivery_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "return_reason": self.return_reason,
            "refund_details": self.refund_details(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Order line; price snapshotted at checkout."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    title_id = db.Column(db.Integer, db.ForeignKey("titles.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    title = db.relationship("Title")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "title_id": self.title_id,
            "title": self.title.title if self.title else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }

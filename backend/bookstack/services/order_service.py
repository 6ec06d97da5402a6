# Overview: Order state machine; checkout, status transitions and their side effects.

"""
Order State Machine

WHY: An order moves physical stock out of the catalog ledger and promises
reading access to the purchaser. Both consequences must happen exactly once
per status change, so legality, guards and effects are kept in three
separate, independently testable pieces:

- ORDER_TRANSITIONS / can_transition(): pure legality table
- _check_guards(): preconditions on the order itself (return window,
  refund details), evaluated before any mutation
- ENTRY_EFFECTS: side effects keyed by target status

LIFECYCLE:
PENDING -> PROCESSING -> SHIPPED -> DELIVERED        (happy path)
PENDING | PROCESSING -> CANCELLED                     (terminal)
DELIVERED -> RETURN_REQUESTED                         (within return window)
RETURN_REQUESTED -> RETURN_ACCEPTED | RETURN_REJECTED | REFUND_INITIATED
RETURN_ACCEPTED -> RETURNED | REFUND_INITIATED
RETURNED -> PROCESSING (re-shipment) | REFUND_INITIATED
REFUND_INITIATED -> REFUNDED                          (refund details required)

IDEMPOTENCE: requesting the current status is a no-op. No effects, no
notification, no activity entry.

POST-COMMIT DISPATCH: notifications, invoice rendering and email run only
after the transition has committed. Their failures are logged and never
undo the transition.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable

from flask import current_app
from sqlalchemy import func

from ..collaborators import get_collaborators
from ..extensions import db
from ..models import Address, Order, OrderItem, Title, User
from ..models.accounts import ROLE_ADMIN, ROLE_SUPER_ADMIN
from ..models.catalog import AVAILABILITY_ARCHIVED, AVAILABILITY_DAMAGED
from ..validation import (
    MAX_LINE_QUANTITY,
    NotFoundError,
    StateConflict,
    UpstreamFailure,
    ValidationError,
    require_positive_int,
    require_text,
)
from . import entitlement_service
from .activity_service import append_activity
from .concurrency import lock_for_update, run_with_retry
from .mail_service import Attachment
from .notification_service import CATEGORY_ORDER
from .stock_service import release_stock, reserve_stock
from bookstack.time_utils import utcnow


# =============================================================================
# STATUSES & TRANSITION TABLE
# =============================================================================

PENDING = "PENDING"
PROCESSING = "PROCESSING"
SHIPPED = "SHIPPED"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"
RETURN_REQUESTED = "RETURN_REQUESTED"
RETURN_ACCEPTED = "RETURN_ACCEPTED"
RETURN_REJECTED = "RETURN_REJECTED"
RETURNED = "RETURNED"
REFUND_INITIATED = "REFUND_INITIATED"
REFUNDED = "REFUNDED"

ORDER_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {PROCESSING, CANCELLED},
    PROCESSING: {SHIPPED, CANCELLED},
    SHIPPED: {DELIVERED},
    DELIVERED: {RETURN_REQUESTED},
    RETURN_REQUESTED: {RETURN_ACCEPTED, RETURN_REJECTED, REFUND_INITIATED},
    RETURN_ACCEPTED: {RETURNED, REFUND_INITIATED},
    RETURNED: {PROCESSING, REFUND_INITIATED},
    REFUND_INITIATED: {REFUNDED},
    CANCELLED: set(),
    RETURN_REJECTED: set(),
    REFUNDED: set(),
}

VALID_ORDER_STATUSES = set(ORDER_TRANSITIONS)

# Statuses a purchaser may cancel from on their own
USER_CANCELLABLE_STATUSES = {PENDING, PROCESSING}

# Transitions that email the purchaser an invoice
INVOICE_STATUSES = {SHIPPED, DELIVERED}

STATUS_MESSAGES = {
    PROCESSING: "Your order {ref} is being processed.",
    SHIPPED: "Your order {ref} has been shipped.",
    DELIVERED: "Your order {ref} has been delivered.",
    CANCELLED: "Order cancelled: Your order {ref} has been cancelled.",
    RETURN_REQUESTED: "Exchange request submitted for Order {ref}.",
    RETURN_ACCEPTED: "Your exchange request for Order {ref} has been ACCEPTED.",
    RETURN_REJECTED: "Your exchange request for Order {ref} has been REJECTED.",
    RETURNED: "Your exchange request for Order {ref} has been APPROVED.",
    REFUND_INITIATED: "Refund initiated for Order {ref}. Please provide your bank details.",
    REFUNDED: "Refund completed for Order {ref}.",
}

# Bulk transition skip reasons
SKIP_NOT_FOUND = "NOT_FOUND"
SKIP_NO_CHANGE = "NO_CHANGE"
SKIP_INVALID_TRANSITION = "INVALID_TRANSITION"
SKIP_REFUND_DETAILS_MISSING = "REFUND_DETAILS_MISSING"
SKIP_RETURN_WINDOW_EXPIRED = "RETURN_WINDOW_EXPIRED"

FAST_DELIVERY_HOURS = 24
STANDARD_DELIVERY_HOURS = 96


# =============================================================================
# ERRORS
# =============================================================================

class CartEmpty(ValidationError):
    code = "CART_EMPTY"


class AddressNotFound(NotFoundError):
    code = "ADDRESS_NOT_FOUND"


class InvalidTransition(StateConflict):
    code = "INVALID_TRANSITION"


class RefundDetailsMissing(StateConflict):
    code = "REFUND_DETAILS_MISSING"


class ReturnWindowExpired(StateConflict):
    code = "RETURN_WINDOW_EXPIRED"


def can_transition(from_status: str, to_status: str) -> bool:
    """Pure legality check; no side state."""
    return to_status in ORDER_TRANSITIONS.get(from_status, set())


def normalize_status(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("status is required")
    status = value.strip().upper()
    if status not in VALID_ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status '{value}'. Must be one of: {', '.join(sorted(VALID_ORDER_STATUSES))}"
        )
    return status


# =============================================================================
# GUARDS & ENTRY EFFECTS
# =============================================================================

def _check_guards(order: Order, target: str, now: datetime) -> None:
    if target == RETURN_REQUESTED:
        window_days = current_app.config["RETURN_WINDOW_DAYS"]
        if order.delivered_at is None or now - order.delivered_at > timedelta(days=window_days):
            raise ReturnWindowExpired(
                f"Return window of {window_days} days has expired for order {order.reference}",
                details={"order_id": order.id, "return_window_days": window_days},
            )

    if target == REFUNDED and not (order.refund_account_number or "").strip():
        raise RefundDetailsMissing(
            "Refund details have not been submitted for this order",
            details={"order_id": order.id, "status": order.status},
        )


def _validate_transition(order: Order, target: str, now: datetime) -> None:
    if not can_transition(order.status, target):
        raise InvalidTransition(
            f"Cannot change order status from {order.status} to {target}",
            details={"order_id": order.id, "current_status": order.status, "requested_status": target},
        )
    _check_guards(order, target, now)


def _restock_and_purge(order: Order, now: datetime) -> None:
    """Put every line's copies back, then drop access promised at checkout."""
    for item in order.items:
        release_stock(item.title_id, item.quantity)
    entitlement_service.purge_placeholders(order.user_id, [item.title_id for item in order.items])


def _grant_access(order: Order, now: datetime) -> None:
    order.delivered_at = now
    plan = order.user.membership_plan if order.user else None
    if plan is not None:
        duration = plan.access_duration_days
    else:
        duration = current_app.config["DEFAULT_ACCESS_DURATION_DAYS"]

    for title_id in OrderedDict.fromkeys(item.title_id for item in order.items):
        entitlement_service.upsert_order_grant(
            order.user_id,
            title_id,
            order_id=order.id,
            now=now,
            duration_days=duration,
        )


ENTRY_EFFECTS: dict[str, Callable[[Order, datetime], None]] = {
    CANCELLED: _restock_and_purge,
    RETURNED: _restock_and_purge,
    DELIVERED: _grant_access,
}


# =============================================================================
# POST-COMMIT DISPATCH
# =============================================================================

def _notify_status(order: Order, status: str) -> None:
    template = STATUS_MESSAGES.get(status)
    if not template:
        return
    try:
        get_collaborators().notifier.notify(
            order.user_id,
            CATEGORY_ORDER,
            template.format(ref=order.reference),
            target_id=str(order.id),
        )
    except Exception:
        current_app.logger.exception("Failed to notify user for order %s", order.id)


def _notify_staff(message: str) -> None:
    notifier = get_collaborators().notifier
    for role in (ROLE_ADMIN, ROLE_SUPER_ADMIN):
        try:
            notifier.notify_role(role, message, category=CATEGORY_ORDER)
        except Exception:
            current_app.logger.exception("Failed to notify %s users", role)


def _send_invoice_email(order: Order, status: str) -> None:
    """Best effort: a render failure still sends the email without attachment."""
    collaborators = get_collaborators()
    user = order.user
    if user is None or not user.email:
        return

    snapshot = order.to_dict()
    attachments = []
    try:
        renderer = collaborators.invoice_renderer
        attachments.append(
            Attachment(
                filename=f"Invoice_{order.id:08d}.{renderer.file_extension}",
                content=renderer.render(snapshot),
                content_type=renderer.content_type,
            )
        )
    except Exception:
        current_app.logger.exception("Failed to render invoice for order %s", order.id)

    try:
        collaborators.mailer.send(
            user.email,
            f"Your Order Status Update - {order.reference}",
            f"Hi {user.name}, your order {order.reference} status is {status}.",
            attachments=attachments,
        )
    except Exception:
        current_app.logger.exception("Failed to email invoice for order %s", order.id)


def _dispatch_after_transition(order: Order, status: str) -> None:
    _notify_status(order, status)
    if status in INVOICE_STATUSES:
        _send_invoice_email(order, status)


# =============================================================================
# CHECKOUT
# =============================================================================

def _normalize_items(items) -> "OrderedDict[int, int]":
    """Validate cart lines and aggregate quantities per title (first-seen order)."""
    if not items:
        raise CartEmpty("Cart is empty")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    lines: OrderedDict[int, int] = OrderedDict()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if item.get("title_id") is None:
            raise ValidationError(f"items[{index}].title_id is required")
        title_id = require_positive_int(item.get("title_id"), f"items[{index}].title_id")
        quantity = require_positive_int(
            item.get("quantity"), f"items[{index}].quantity", maximum=MAX_LINE_QUANTITY
        )
        lines[title_id] = lines.get(title_id, 0) + quantity
    return lines


def _delivery_terms(plan, subtotal_cents: int, now: datetime) -> tuple[int, datetime]:
    waived = bool(plan and plan.delivery_fee_waived)
    if waived or subtotal_cents >= current_app.config["FREE_DELIVERY_THRESHOLD_CENTS"]:
        fee = 0
    else:
        fee = current_app.config["DELIVERY_FEE_CENTS"]
    hours = FAST_DELIVERY_HOURS if waived else STANDARD_DELIVERY_HOURS
    return fee, now + timedelta(hours=hours)


def place_order(user_id: int, items, address_id, now: datetime | None = None) -> Order:
    """
    Check out a cart as a cash-on-delivery order.

    Reserves stock for every line atomically, snapshots prices, records
    placeholder entitlements for titles the user has never had, and
    persists the order as PENDING in a single commit.

    Raises:
        CartEmpty, ValidationError: malformed cart
        AddressNotFound: address missing or owned by someone else
        NotFoundError: unknown user or title
        InsufficientStock: any title short of copies (nothing reserved)
    """
    now = now or utcnow()
    lines = _normalize_items(items)
    if address_id is None:
        raise ValidationError("address_id is required")
    address_id = require_positive_int(address_id, "address_id")

    def _op() -> Order:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        address = db.session.get(Address, address_id)
        if address is None or address.user_id != user.id:
            raise AddressNotFound("Address not found", details={"address_id": address_id})

        titles = {
            t.id: t
            for t in db.session.query(Title).filter(Title.id.in_(list(lines))).all()
        }
        missing = [title_id for title_id in lines if title_id not in titles]
        if missing:
            raise NotFoundError("Title not found", details={"title_ids": missing})

        unavailable = [
            title_id
            for title_id in lines
            if titles[title_id].availability_status in {AVAILABILITY_ARCHIVED, AVAILABILITY_DAMAGED}
        ]
        if unavailable:
            raise ValidationError(
                "Some titles are not available for purchase",
                details={"title_ids": unavailable},
            )

        subtotal = sum(titles[title_id].price_cents * qty for title_id, qty in lines.items())

        for title_id, qty in lines.items():
            reserve_stock(title_id, qty)

        fee, estimated_delivery_at = _delivery_terms(user.membership_plan, subtotal, now)

        order = Order(
            user_id=user.id,
            address_id=address.id,
            status=PENDING,
            subtotal_cents=subtotal,
            delivery_fee_cents=fee,
            total_amount_cents=subtotal + fee,
            estimated_delivery_at=estimated_delivery_at,
            created_at=now,
            updated_at=now,
        )
        order.items = [
            OrderItem(
                title_id=title_id,
                quantity=qty,
                unit_price_cents=titles[title_id].price_cents,
            )
            for title_id, qty in lines.items()
        ]
        db.session.add(order)
        db.session.flush()

        for title_id in lines:
            entitlement_service.create_placeholder(user.id, title_id, order_id=order.id, now=now)

        append_activity(
            action="ORDER_PLACED",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=user.id,
            note=f"Order {order.reference} placed with {len(lines)} title(s)",
            occurred_at=now,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)

    total_copies = sum(lines.values())
    try:
        get_collaborators().notifier.notify(
            order.user_id,
            CATEGORY_ORDER,
            f"Order confirmed: {total_copies} book(s) will be delivered to {order.address.city}",
            target_id=str(order.id),
        )
    except Exception:
        current_app.logger.exception("Failed to notify user for order %s", order.id)
    _notify_staff(f"New Order: {order.user.name} placed order {order.reference} for {total_copies} item(s)")

    return order


# =============================================================================
# TRANSITIONS
# =============================================================================

def _run_transition(
    order_id: int,
    target: str,
    *,
    actor_id: int | None,
    now: datetime,
    owner_id: int | None = None,
    allowed_from: set[str] | None = None,
    before_commit: Callable[[Order], None] | None = None,
) -> tuple[Order, bool]:
    """
    Load, validate, apply and commit one transition.

    Returns (order, changed); changed is False for a same-status no-op.
    """

    def _op() -> tuple[Order, bool]:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or (owner_id is not None and order.user_id != owner_id):
            raise NotFoundError("Order not found", details={"order_id": order_id})

        if order.status == target:
            db.session.rollback()
            return order, False

        if allowed_from is not None and order.status not in allowed_from:
            raise InvalidTransition(
                f"Order cannot be changed to {target} from {order.status}",
                details={"order_id": order.id, "current_status": order.status, "requested_status": target},
            )

        _validate_transition(order, target, now)

        previous = order.status
        effect = ENTRY_EFFECTS.get(target)
        if effect is not None:
            effect(order, now)
        order.status = target
        order.updated_at = now
        if before_commit is not None:
            before_commit(order)

        append_activity(
            action="ORDER_STATUS_UPDATED",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_id,
            note=f"Order {order.reference} status {previous} -> {target}",
            occurred_at=now,
        )
        db.session.commit()
        return order, True

    return run_with_retry(_op)


def transition_order(order_id: int, target_status, actor_id: int | None, now: datetime | None = None) -> Order:
    """
    Move an order to `target_status` (staff path).

    Raises:
        ValidationError: unknown status
        NotFoundError: unknown order
        InvalidTransition: illegal (current, target) pair
        ReturnWindowExpired, RefundDetailsMissing: guard failures
    """
    target = normalize_status(target_status)
    now = now or utcnow()

    order, changed = _run_transition(order_id, target, actor_id=actor_id, now=now)
    if changed:
        _dispatch_after_transition(order, target)
    return order


_SKIP_REASONS = (
    (RefundDetailsMissing, SKIP_REFUND_DETAILS_MISSING),
    (ReturnWindowExpired, SKIP_RETURN_WINDOW_EXPIRED),
    (InvalidTransition, SKIP_INVALID_TRANSITION),
    (NotFoundError, SKIP_NOT_FOUND),
)


def _skip_reason(error: Exception) -> str | None:
    for error_type, reason in _SKIP_REASONS:
        if isinstance(error, error_type):
            return reason
    return None


def bulk_transition_orders(order_ids, target_status, actor_id: int | None, now: datetime | None = None) -> dict:
    """
    Apply one target status to many orders, each validated and committed
    on its own. Bad entries are skipped with a reason instead of failing
    the batch.
    """
    target = normalize_status(target_status)
    if not isinstance(order_ids, list) or not order_ids:
        raise ValidationError("order_ids must be a non-empty list")
    ids = list(
        OrderedDict.fromkeys(
            require_positive_int(v, f"order_ids[{i}]") for i, v in enumerate(order_ids)
        )
    )
    now = now or utcnow()

    modified: list[Order] = []
    skipped: list[dict] = []
    for order_id in ids:
        try:
            order, changed = _run_transition(order_id, target, actor_id=actor_id, now=now)
        except (NotFoundError, StateConflict) as e:
            reason = _skip_reason(e)
            if reason is None:
                raise
            skipped.append({"order_id": order_id, "reason": reason})
            continue

        if changed:
            modified.append(order)
        else:
            skipped.append({"order_id": order_id, "reason": SKIP_NO_CHANGE})

    for order in modified:
        _dispatch_after_transition(order, target)

    return {
        "modified_count": len(modified),
        "skipped_count": len(skipped),
        "skipped": skipped,
    }


def cancel_own_order(order_id: int, user_id: int, now: datetime | None = None) -> Order:
    """Purchaser cancels their own order while it is still PENDING/PROCESSING."""
    now = now or utcnow()
    order, changed = _run_transition(
        order_id,
        CANCELLED,
        actor_id=user_id,
        now=now,
        owner_id=user_id,
        allowed_from=USER_CANCELLABLE_STATUSES,
    )
    if not changed:
        raise InvalidTransition(
            "Order is already cancelled",
            details={"order_id": order.id, "current_status": order.status, "requested_status": CANCELLED},
        )
    _dispatch_after_transition(order, CANCELLED)
    return order


def request_return(order_id: int, user_id: int, reason, now: datetime | None = None) -> Order:
    """Purchaser asks to return/exchange a delivered order within the window."""
    reason = require_text(reason, "reason")
    now = now or utcnow()

    def _store_reason(order: Order) -> None:
        order.return_reason = reason

    order, changed = _run_transition(
        order_id,
        RETURN_REQUESTED,
        actor_id=user_id,
        now=now,
        owner_id=user_id,
        before_commit=_store_reason,
    )
    if not changed:
        raise InvalidTransition(
            "A return has already been requested for this order",
            details={"order_id": order.id, "current_status": order.status, "requested_status": RETURN_REQUESTED},
        )
    _dispatch_after_transition(order, RETURN_REQUESTED)
    _notify_staff(f"Return requested for Order {order.reference}: {reason}")
    return order


REFUND_DETAIL_FIELDS = ("account_name", "bank_name", "account_number", "routing_code")


def submit_refund_details(order_id: int, user_id: int, details, now: datetime | None = None) -> Order:
    """
    Purchaser supplies bank details once a refund has been initiated.
    Not a status transition; it unblocks REFUND_INITIATED -> REFUNDED.
    """
    if not isinstance(details, dict):
        raise ValidationError("Refund details are required")
    clean = {field: require_text(details.get(field), field, max_length=128) for field in REFUND_DETAIL_FIELDS}
    now = now or utcnow()

    def _op() -> Order:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.user_id != user_id:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        if order.status != REFUND_INITIATED:
            raise StateConflict(
                "Refund has not been initiated for this order",
                code="REFUND_NOT_INITIATED",
                details={"order_id": order.id, "current_status": order.status},
            )

        order.refund_account_name = clean["account_name"]
        order.refund_bank_name = clean["bank_name"]
        order.refund_account_number = clean["account_number"]
        order.refund_routing_code = clean["routing_code"]
        order.refund_submitted_at = now
        order.updated_at = now

        append_activity(
            action="REFUND_DETAILS_SUBMITTED",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=user_id,
            occurred_at=now,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    _notify_staff(f"Refund Details Submitted: User {order.user.name} for Order {order.reference}")
    return order


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int, *, viewer: User | None = None) -> Order:
    """Fetch an order; non-staff viewers only see their own."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    if viewer is not None and not viewer.is_staff and order.user_id != viewer.id:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_user_orders(user_id: int, status: str | None = None) -> list[Order]:
    query = db.session.query(Order).filter_by(user_id=user_id)
    if status:
        query = query.filter(Order.status == normalize_status(status))
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_orders(status: str | None = None, *, limit: int = 50, offset: int = 0) -> dict:
    """Staff listing with pagination and per-status counts."""
    limit = max(1, min(int(limit), 200))
    offset = max(0, int(offset))

    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == normalize_status(status))

    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset).all()

    counts = {s: 0 for s in sorted(VALID_ORDER_STATUSES)}
    for row_status, count in db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
        counts[row_status] = count

    return {
        "orders": [o.to_dict(include_items=False) for o in orders],
        "total": total,
        "limit": limit,
        "offset": offset,
        "counts": counts,
    }


def render_order_invoice(order_id: int, viewer: User) -> tuple[bytes, str, str]:
    """
    Render the invoice for an order visible to `viewer`.

    Returns (content, content_type, filename).
    """
    order = get_order(order_id, viewer=viewer)
    renderer = get_collaborators().invoice_renderer
    try:
        content = renderer.render(order.to_dict())
    except Exception as e:
        current_app.logger.exception("Failed to render invoice for order %s", order.id)
        raise UpstreamFailure("Invoice rendering failed", details={"order_id": order.id}) from e
    return content, renderer.content_type, f"Invoice_{order.id:08d}.{renderer.file_extension}"

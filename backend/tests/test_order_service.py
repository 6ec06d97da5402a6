"""
Order state machine tests.

Verifies:
- Checkout: validation, atomic stock reservation, pricing, placeholders
- Transition legality table and guards (return window, refund details)
- Entry effects: restock + placeholder purge, grants on delivery
- Same-status requests are no-ops with no side effects
- Post-commit notifications and invoice email (best effort)
- Bulk transitions skip bad entries with a reason
"""

from datetime import datetime, timedelta

import pytest

from bookstack.extensions import db
from bookstack.models import ActivityLog, EntitlementRecord, Order, Title
from bookstack.models.catalog import AVAILABILITY_ARCHIVED, AVAILABILITY_OUT_OF_STOCK
from bookstack.models.entitlements import ENTITLEMENT_ACTIVE, ENTITLEMENT_EXPIRED, PROVENANCE_ORDER
from bookstack.services import entitlement_service, order_service, quota_service
from bookstack.services.order_service import (
    AddressNotFound,
    CartEmpty,
    InvalidTransition,
    RefundDetailsMissing,
    ReturnWindowExpired,
    can_transition,
)
from bookstack.services.stock_service import InsufficientStock
from bookstack.validation import NotFoundError, StateConflict, ValidationError


NOW = datetime(2026, 3, 15, 12, 0)

REFUND_DETAILS = {
    "account_name": "Jane Reader",
    "bank_name": "First Bank",
    "account_number": "000123456789",
    "routing_code": "FBNK0001",
}


def _copies(title_id):
    db.session.expire_all()
    return db.session.get(Title, title_id).copies_available


@pytest.fixture
def cart(reader, make_title, make_address):
    """A reader with an address and two in-stock titles."""
    address = make_address(reader, city="Shelbyville")
    t1 = make_title(copies=5, price_cents=20000)
    t2 = make_title(copies=3, price_cents=15000)
    return reader, address, t1, t2


def _place(cart, quantities=(2, 1), now=NOW):
    user, address, t1, t2 = cart
    items = [{"title_id": t1.id, "quantity": quantities[0]}, {"title_id": t2.id, "quantity": quantities[1]}]
    return order_service.place_order(user.id, items, address.id, now=now)


def _advance(order_id, *statuses, now=NOW):
    order = None
    for status in statuses:
        order = order_service.transition_order(order_id, status, actor_id=None, now=now)
    return order


# =============================================================================
# TRANSITION TABLE
# =============================================================================

class TestTransitionTable:

    @pytest.mark.parametrize(
        "src,dst",
        [
            ("PENDING", "PROCESSING"),
            ("PENDING", "CANCELLED"),
            ("PROCESSING", "SHIPPED"),
            ("SHIPPED", "DELIVERED"),
            ("DELIVERED", "RETURN_REQUESTED"),
            ("RETURN_REQUESTED", "REFUND_INITIATED"),
            ("RETURN_ACCEPTED", "RETURNED"),
            ("RETURNED", "PROCESSING"),
            ("REFUND_INITIATED", "REFUNDED"),
        ],
    )
    def test_legal(self, src, dst):
        assert can_transition(src, dst)

    @pytest.mark.parametrize(
        "src,dst",
        [
            ("PENDING", "DELIVERED"),
            ("SHIPPED", "CANCELLED"),
            ("DELIVERED", "REFUNDED"),
            ("CANCELLED", "PROCESSING"),
            ("RETURN_REJECTED", "RETURN_REQUESTED"),
            ("REFUNDED", "REFUND_INITIATED"),
        ],
    )
    def test_illegal(self, src, dst):
        assert not can_transition(src, dst)

    def test_terminal_statuses_have_no_exits(self):
        for status in ("CANCELLED", "RETURN_REJECTED", "REFUNDED"):
            assert order_service.ORDER_TRANSITIONS[status] == set()


# =============================================================================
# CHECKOUT
# =============================================================================

class TestPlaceOrder:

    def test_reserves_stock_and_snapshots_prices(self, cart, notifier):
        user, _, t1, t2 = cart
        order = _place(cart)

        assert order.status == "PENDING"
        assert order.subtotal_cents == 2 * 20000 + 15000
        assert order.delivery_fee_cents == 0
        assert order.total_amount_cents == 55000
        assert order.estimated_delivery_at == NOW + timedelta(hours=96)
        assert [(i.title_id, i.quantity, i.unit_price_cents) for i in order.items] == [
            (t1.id, 2, 20000),
            (t2.id, 1, 15000),
        ]
        assert _copies(t1.id) == 3
        assert _copies(t2.id) == 2
        assert notifier.messages_for(user.id) == ["Order confirmed: 3 book(s) will be delivered to Shelbyville"]
        assert {m["role"] for m in notifier.role_messages} == {"admin", "super_admin"}

    def test_delivery_fee_below_threshold(self, reader, make_title, make_address):
        address = make_address(reader)
        title = make_title(price_cents=10000)
        order = order_service.place_order(reader.id, [{"title_id": title.id, "quantity": 1}], address.id, now=NOW)

        assert order.delivery_fee_cents == 5000
        assert order.total_amount_cents == 15000

    def test_premium_waives_fee_and_ships_fast(self, make_user, make_title, make_address):
        user = make_user("premium")
        address = make_address(user)
        title = make_title(price_cents=1000)
        order = order_service.place_order(user.id, [{"title_id": title.id, "quantity": 1}], address.id, now=NOW)

        assert order.delivery_fee_cents == 0
        assert order.estimated_delivery_at == NOW + timedelta(hours=24)

    def test_duplicate_lines_are_aggregated(self, cart):
        user, address, t1, _ = cart
        items = [{"title_id": t1.id, "quantity": 2}, {"title_id": t1.id, "quantity": 2}]
        order = order_service.place_order(user.id, items, address.id, now=NOW)

        assert len(order.items) == 1
        assert order.items[0].quantity == 4
        assert _copies(t1.id) == 1

    def test_insufficient_stock_reserves_nothing(self, cart):
        user, address, t1, t2 = cart
        items = [{"title_id": t1.id, "quantity": 2}, {"title_id": t2.id, "quantity": 4}]

        with pytest.raises(InsufficientStock):
            order_service.place_order(user.id, items, address.id, now=NOW)

        assert _copies(t1.id) == 5
        assert _copies(t2.id) == 3
        assert db.session.query(Order).count() == 0
        assert db.session.query(EntitlementRecord).count() == 0

    def test_last_copy_flips_out_of_stock(self, reader, make_title, make_address):
        address = make_address(reader)
        title = make_title(copies=1)
        order_service.place_order(reader.id, [{"title_id": title.id, "quantity": 1}], address.id, now=NOW)

        db.session.expire_all()
        assert db.session.get(Title, title.id).availability_status == AVAILABILITY_OUT_OF_STOCK

    def test_empty_cart(self, cart):
        user, address, _, _ = cart
        with pytest.raises(CartEmpty):
            order_service.place_order(user.id, [], address.id, now=NOW)

    @pytest.mark.parametrize(
        "item",
        [
            {"quantity": 1},
            {"title_id": 1, "quantity": 0},
            {"title_id": 1, "quantity": -2},
            {"title_id": 1, "quantity": 1.5},
            {"title_id": 1, "quantity": "two"},
        ],
    )
    def test_malformed_items(self, cart, item):
        user, address, _, _ = cart
        with pytest.raises(ValidationError):
            order_service.place_order(user.id, [item], address.id, now=NOW)

    def test_foreign_address(self, cart, make_user, make_address):
        user, _, t1, _ = cart
        other_address = make_address(make_user("basic"))

        with pytest.raises(AddressNotFound):
            order_service.place_order(user.id, [{"title_id": t1.id, "quantity": 1}], other_address.id, now=NOW)
        assert _copies(t1.id) == 5

    def test_unknown_title(self, cart):
        user, address, _, _ = cart
        with pytest.raises(NotFoundError):
            order_service.place_order(user.id, [{"title_id": 999, "quantity": 1}], address.id, now=NOW)

    def test_archived_title_cannot_be_ordered(self, reader, make_title, make_address):
        address = make_address(reader)
        title = make_title(copies=4, status=AVAILABILITY_ARCHIVED)

        with pytest.raises(ValidationError):
            order_service.place_order(reader.id, [{"title_id": title.id, "quantity": 1}], address.id, now=NOW)

    def test_placeholders_only_for_new_titles(self, cart):
        user, _, t1, t2 = cart
        quota_service.request_entitlement(user.id, t2.id, now=NOW - timedelta(days=1))
        order = _place(cart)

        placeholder = entitlement_service.latest_for(user.id, t1.id)
        assert placeholder.is_placeholder
        assert placeholder.order_id == order.id
        assert not entitlement_service.latest_for(user.id, t2.id).is_placeholder


# =============================================================================
# TRANSITIONS
# =============================================================================

class TestTransitions:

    def test_happy_path_grants_access_on_delivery(self, cart, notifier, mailer):
        user, _, t1, t2 = cart
        order = _place(cart)
        notifier.reset()

        order = _advance(order.id, "PROCESSING", "SHIPPED", "DELIVERED")

        assert order.status == "DELIVERED"
        assert order.delivered_at == NOW
        for title in (t1, t2):
            record = entitlement_service.latest_for(user.id, title.id)
            assert record.status == ENTITLEMENT_ACTIVE
            assert record.provenance == PROVENANCE_ORDER
            assert record.expires_at == NOW + timedelta(days=14)
        # Delivery does not touch stock
        assert _copies(t1.id) == 3

        assert notifier.messages_for(user.id) == [
            f"Your order {order.reference} is being processed.",
            f"Your order {order.reference} has been shipped.",
            f"Your order {order.reference} has been delivered.",
        ]
        assert [m["subject"] for m in mailer.outbox] == [f"Your Order Status Update - {order.reference}"] * 2
        attachment = mailer.outbox[-1]["attachments"][0]
        assert attachment.filename == f"Invoice_{order.id:08d}.txt"
        assert attachment.content.startswith(b"BookStack Invoice")

    def test_delivery_refreshes_existing_grant_without_quota(self, cart):
        user, _, t1, _ = cart
        quota_service.request_entitlement(user.id, t1.id, now=NOW - timedelta(days=20))
        order = _place(cart, now=NOW - timedelta(days=2))

        _advance(order.id, "PROCESSING", "SHIPPED", "DELIVERED")

        rows = db.session.query(EntitlementRecord).filter_by(user_id=user.id, title_id=t1.id).all()
        assert len(rows) == 1
        assert rows[0].expires_at == NOW + timedelta(days=14)
        assert entitlement_service.count_manual_grants_since(user.id, NOW - timedelta(days=30)) == 0

    def test_cancel_restocks_and_purges_placeholders(self, cart):
        user, _, t1, t2 = cart
        order = _place(cart)

        order = order_service.transition_order(order.id, "CANCELLED", actor_id=None, now=NOW)

        assert order.status == "CANCELLED"
        assert _copies(t1.id) == 5
        assert _copies(t2.id) == 3
        assert entitlement_service.latest_for(user.id, t1.id) is None
        assert entitlement_service.latest_for(user.id, t2.id) is None

    def test_cancel_keeps_real_grants(self, cart):
        user, _, _, t2 = cart
        quota_service.request_entitlement(user.id, t2.id, now=NOW - timedelta(days=1))
        order = _place(cart)

        order_service.transition_order(order.id, "CANCELLED", actor_id=None, now=NOW)

        assert entitlement_service.latest_for(user.id, t2.id).is_live(NOW)

    def test_same_status_is_noop(self, cart, notifier):
        order = _place(cart)
        _advance(order.id, "PROCESSING")
        notifier.reset()
        activity_before = db.session.query(ActivityLog).count()

        order = order_service.transition_order(order.id, "processing", actor_id=None, now=NOW)

        assert order.status == "PROCESSING"
        assert notifier.sent == []
        assert db.session.query(ActivityLog).count() == activity_before

    def test_repeated_cancel_restocks_once(self, cart):
        _, _, t1, _ = cart
        order = _place(cart)

        order_service.transition_order(order.id, "CANCELLED", actor_id=None, now=NOW)
        order_service.transition_order(order.id, "CANCELLED", actor_id=None, now=NOW)

        assert _copies(t1.id) == 5

    def test_illegal_transition_carries_statuses(self, cart):
        order = _place(cart)

        with pytest.raises(InvalidTransition) as exc:
            order_service.transition_order(order.id, "DELIVERED", actor_id=None, now=NOW)

        assert exc.value.details["current_status"] == "PENDING"
        assert exc.value.details["requested_status"] == "DELIVERED"

    def test_unknown_status(self, cart):
        order = _place(cart)
        with pytest.raises(ValidationError):
            order_service.transition_order(order.id, "LOST", actor_id=None, now=NOW)

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.transition_order(999, "PROCESSING", actor_id=None, now=NOW)

    def test_activity_logged_per_transition(self, cart):
        order = _place(cart)
        _advance(order.id, "PROCESSING", "SHIPPED")

        actions = [
            a.action
            for a in db.session.query(ActivityLog)
            .filter_by(entity_type="order", entity_id=order.id)
            .order_by(ActivityLog.id)
            .all()
        ]
        assert actions == ["ORDER_PLACED", "ORDER_STATUS_UPDATED", "ORDER_STATUS_UPDATED"]

    def test_invoice_failure_still_sends_email(self, app, cart, mailer, monkeypatch):
        class BrokenRenderer:
            content_type = "application/pdf"
            file_extension = "pdf"

            def render(self, order_snapshot):
                raise RuntimeError("renderer down")

        from dataclasses import replace
        monkeypatch.setitem(
            app.extensions, "bookstack", replace(app.extensions["bookstack"], invoice_renderer=BrokenRenderer())
        )
        order = _place(cart)

        order = _advance(order.id, "PROCESSING", "SHIPPED")

        assert order.status == "SHIPPED"
        assert len(mailer.outbox) == 1
        assert mailer.outbox[0]["attachments"] == []

    def test_notifier_failure_does_not_undo_transition(self, app, cart, monkeypatch):
        class BrokenNotifier:
            def notify(self, *args, **kwargs):
                raise RuntimeError("notifier down")

            def notify_role(self, *args, **kwargs):
                raise RuntimeError("notifier down")

        from dataclasses import replace
        monkeypatch.setitem(
            app.extensions, "bookstack", replace(app.extensions["bookstack"], notifier=BrokenNotifier())
        )
        order = _place(cart)
        order = _advance(order.id, "PROCESSING")

        db.session.expire_all()
        assert db.session.get(Order, order.id).status == "PROCESSING"


# =============================================================================
# RETURNS & REFUNDS
# =============================================================================

class TestReturnsAndRefunds:

    def _delivered(self, cart, delivered_at=NOW):
        order = _place(cart, now=delivered_at - timedelta(days=3))
        return _advance(order.id, "PROCESSING", "SHIPPED", "DELIVERED", now=delivered_at)

    def test_return_within_window(self, cart, notifier):
        user = cart[0]
        order = self._delivered(cart)

        order = order_service.request_return(order.id, user.id, "Damaged spine", now=NOW + timedelta(days=7))

        assert order.status == "RETURN_REQUESTED"
        assert order.return_reason == "Damaged spine"
        assert any("Damaged spine" in m["message"] for m in notifier.role_messages)

    def test_return_after_window(self, cart):
        user = cart[0]
        order = self._delivered(cart)

        with pytest.raises(ReturnWindowExpired):
            order_service.request_return(order.id, user.id, "Too late", now=NOW + timedelta(days=8))

        db.session.expire_all()
        assert db.session.get(Order, order.id).status == "DELIVERED"

    def test_return_requires_reason(self, cart):
        order = self._delivered(cart)
        with pytest.raises(ValidationError):
            order_service.request_return(order.id, cart[0].id, "  ", now=NOW)

    def test_return_by_other_user_is_not_found(self, cart, make_user):
        order = self._delivered(cart)
        with pytest.raises(NotFoundError):
            order_service.request_return(order.id, make_user("basic").id, "Mine now", now=NOW)

    def test_returned_restocks_and_purges(self, cart):
        user, _, t1, t2 = cart
        order = self._delivered(cart)
        order_service.request_return(order.id, user.id, "Wrong edition", now=NOW + timedelta(days=1))

        _advance(order.id, "RETURN_ACCEPTED", "RETURNED", now=NOW + timedelta(days=2))

        assert _copies(t1.id) == 5
        assert _copies(t2.id) == 3
        # Delivered grants are real grants, not placeholders
        assert entitlement_service.latest_for(user.id, t1.id) is not None

    def test_refund_requires_details(self, cart):
        user = cart[0]
        order = self._delivered(cart)
        order_service.request_return(order.id, user.id, "Changed my mind", now=NOW)
        _advance(order.id, "REFUND_INITIATED")

        with pytest.raises(RefundDetailsMissing):
            order_service.transition_order(order.id, "REFUNDED", actor_id=None, now=NOW)

        order_service.submit_refund_details(order.id, user.id, REFUND_DETAILS, now=NOW)
        order = order_service.transition_order(order.id, "REFUNDED", actor_id=None, now=NOW)

        assert order.status == "REFUNDED"
        assert order.refund_details()["account_number"] == "000123456789"

    def test_refund_details_only_after_initiation(self, cart):
        order = self._delivered(cart)
        with pytest.raises(StateConflict) as exc:
            order_service.submit_refund_details(order.id, cart[0].id, REFUND_DETAILS, now=NOW)
        assert exc.value.code == "REFUND_NOT_INITIATED"

    def test_refund_details_require_all_fields(self, cart):
        order = self._delivered(cart)
        with pytest.raises(ValidationError):
            order_service.submit_refund_details(order.id, cart[0].id, {"account_name": "Jane"}, now=NOW)


# =============================================================================
# PURCHASER CANCEL
# =============================================================================

class TestCancelOwnOrder:

    def test_cancel_pending(self, cart):
        _, _, t1, _ = cart
        order = _place(cart)
        order = order_service.cancel_own_order(order.id, cart[0].id, now=NOW)

        assert order.status == "CANCELLED"
        assert _copies(t1.id) == 5

    def test_cannot_cancel_shipped(self, cart):
        order = _place(cart)
        _advance(order.id, "PROCESSING", "SHIPPED")

        with pytest.raises(InvalidTransition):
            order_service.cancel_own_order(order.id, cart[0].id, now=NOW)

    def test_cannot_cancel_twice(self, cart):
        order = _place(cart)
        order_service.cancel_own_order(order.id, cart[0].id, now=NOW)

        with pytest.raises(InvalidTransition):
            order_service.cancel_own_order(order.id, cart[0].id, now=NOW)

    def test_cannot_cancel_someone_elses_order(self, cart, make_user):
        order = _place(cart)
        with pytest.raises(NotFoundError):
            order_service.cancel_own_order(order.id, make_user("basic").id, now=NOW)


# =============================================================================
# BULK
# =============================================================================

class TestBulkTransition:

    def test_mixed_batch(self, cart):
        first = _place(cart, quantities=(1, 1))
        second = _place(cart, quantities=(1, 1))
        shipped = _place(cart, quantities=(1, 1))
        _advance(second.id, "PROCESSING")
        _advance(shipped.id, "PROCESSING", "SHIPPED")

        result = order_service.bulk_transition_orders(
            [first.id, second.id, shipped.id, 999, first.id], "PROCESSING", actor_id=None, now=NOW
        )

        assert result["modified_count"] == 1
        assert result["skipped_count"] == 3
        assert sorted(result["skipped"], key=lambda s: s["order_id"]) == sorted(
            [
                {"order_id": second.id, "reason": "NO_CHANGE"},
                {"order_id": shipped.id, "reason": "INVALID_TRANSITION"},
                {"order_id": 999, "reason": "NOT_FOUND"},
            ],
            key=lambda s: s["order_id"],
        )

    def test_refund_details_missing_reason(self, cart):
        user = cart[0]
        order = _place(cart, now=NOW - timedelta(days=1))
        _advance(order.id, "PROCESSING", "SHIPPED", "DELIVERED")
        order_service.request_return(order.id, user.id, "Changed my mind", now=NOW)
        _advance(order.id, "REFUND_INITIATED")

        result = order_service.bulk_transition_orders([order.id], "REFUNDED", actor_id=None, now=NOW)

        assert result["skipped"] == [{"order_id": order.id, "reason": "REFUND_DETAILS_MISSING"}]

    def test_return_window_reason(self, cart):
        order = _place(cart, now=NOW - timedelta(days=30))
        _advance(order.id, "PROCESSING", "SHIPPED", "DELIVERED", now=NOW - timedelta(days=20))

        result = order_service.bulk_transition_orders([order.id], "RETURN_REQUESTED", actor_id=None, now=NOW)

        assert result["skipped"] == [{"order_id": order.id, "reason": "RETURN_WINDOW_EXPIRED"}]

    def test_bulk_cancel_restocks_each(self, cart):
        _, _, t1, t2 = cart
        orders = [_place(cart, quantities=(1, 1)) for _ in range(2)]

        result = order_service.bulk_transition_orders([o.id for o in orders], "CANCELLED", actor_id=None, now=NOW)

        assert result["modified_count"] == 2
        assert _copies(t1.id) == 5
        assert _copies(t2.id) == 3

    def test_rejects_empty_list(self, db_session):
        with pytest.raises(ValidationError):
            order_service.bulk_transition_orders([], "PROCESSING", actor_id=None, now=NOW)


# =============================================================================
# EXPIRY INTERPLAY
# =============================================================================

class TestDeliveredGrantExpiry:

    def test_delivered_grant_expires_after_duration(self, cart):
        from bookstack.services.expiry_service import sweep_expired_entitlements

        user, _, t1, _ = cart
        order = _place(cart)
        _advance(order.id, "PROCESSING", "SHIPPED", "DELIVERED")

        sweep_expired_entitlements(now=NOW + timedelta(days=15))

        db.session.expire_all()
        assert entitlement_service.latest_for(user.id, t1.id).status == ENTITLEMENT_EXPIRED

# Overview: Legacy direct borrow of physical copies with overdue fines.

"""
Direct borrow path (kept alongside the readlist).

LIFECYCLE: BORROWED -> RETURN_REQUESTED -> RETURNED

- Issuing takes one copy out of the stock ledger; accepting the return puts
  it back. Both go through stock_service, never direct counter writes.
- Fines accrue per started day past due_at (FINE_PER_DAY_CENTS). An unpaid
  fine blocks the return request; the final fine is stamped on acceptance.
- Plans with can_renew_borrows may extend an open borrow once
  (MAX_RENEWALS) by the plan's borrow period.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from flask import current_app

from ..collaborators import get_collaborators
from ..extensions import db
from ..models import Borrow, Title, User
from ..models.borrows import (
    BORROW_BORROWED,
    BORROW_RETURN_REQUESTED,
    BORROW_RETURNED,
    OPEN_BORROW_STATUSES,
)
from ..validation import NotFoundError, StateConflict, require_positive_int
from .activity_service import append_activity
from .concurrency import lock_for_update, run_with_retry
from .membership_service import resolve_plan
from .notification_service import CATEGORY_BORROW, CATEGORY_RETURN
from .quota_service import UpgradeRequired
from .stock_service import InsufficientStock, release_stock, reserve_stock
from bookstack.time_utils import utcnow


# Upper bound on a caller-chosen borrow period
MAX_BORROW_DAYS = 60
MAX_RENEWALS = 1


def compute_fine(borrow: Borrow, now: datetime) -> int:
    """Fine in cents for `borrow` evaluated at `now`."""
    if now <= borrow.due_at:
        return 0
    overdue_days = math.ceil((now - borrow.due_at) / timedelta(days=1))
    return overdue_days * current_app.config["FINE_PER_DAY_CENTS"]


def _notify(user_id: int, category: str, message: str, *, title_id: int | None, borrow_id: int) -> None:
    try:
        get_collaborators().notifier.notify(
            user_id, category, message, title_id=title_id, target_id=str(borrow_id)
        )
    except Exception:
        current_app.logger.exception("Failed to notify user for borrow %s", borrow_id)


def issue_copy(user_id: int, title_id: int, days=None, now: datetime | None = None) -> Borrow:
    """
    Lend one physical copy to a user.

    Raises:
        NotFoundError: unknown user/title, or no plan can be resolved
        UpgradeRequired: restricted title on a plan without the capability
        InsufficientStock: no copies left
        StateConflict: borrow limit reached or title already borrowed
    """
    now = now or utcnow()
    if days is not None:
        days = require_positive_int(days, "days", maximum=MAX_BORROW_DAYS)

    def _op() -> Borrow:
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if user is None:
            raise NotFoundError("User not found")
        plan = resolve_plan(user, now=now)

        title = db.session.get(Title, title_id)
        if title is None:
            raise NotFoundError("Title not found")

        if title.is_restricted and not plan.can_access_restricted:
            raise UpgradeRequired(
                f'"{title.title}" is a restricted title. Please upgrade your membership to borrow it.',
                details={"title_id": title.id, "plan": plan.name},
            )

        if title.copies_available <= 0:
            raise InsufficientStock(
                "No copies available",
                details={"title_id": title.id, "requested_quantity": 1, "copies_available": 0},
            )

        open_borrows = (
            db.session.query(Borrow)
            .filter(Borrow.user_id == user.id, Borrow.status.in_(OPEN_BORROW_STATUSES))
            .all()
        )
        if len(open_borrows) >= plan.borrow_limit:
            raise StateConflict(
                f"You have reached your membership limit of {plan.borrow_limit} borrowed books. "
                "Please return a book before borrowing another.",
                code="BORROW_LIMIT_REACHED",
                details={"limit": plan.borrow_limit, "used": len(open_borrows)},
            )
        if any(b.title_id == title.id for b in open_borrows):
            raise StateConflict(
                "You already have this title borrowed",
                code="ALREADY_BORROWED",
                details={"title_id": title.id},
            )

        reserve_stock(title.id, 1)

        borrow = Borrow(
            user_id=user.id,
            title_id=title.id,
            status=BORROW_BORROWED,
            issued_at=now,
            due_at=now + timedelta(days=days or plan.borrow_duration_days),
        )
        db.session.add(borrow)
        db.session.flush()

        append_activity(
            action="BORROW_BOOK",
            entity_type="borrow",
            entity_id=borrow.id,
            actor_user_id=user.id,
            note=f"Borrowed title: {title.title}",
            occurred_at=now,
        )
        db.session.commit()
        return borrow

    borrow = run_with_retry(_op)
    _notify(
        borrow.user_id,
        CATEGORY_BORROW,
        f'You borrowed "{borrow.title.title}". Please return it by {borrow.due_at:%Y-%m-%d}.',
        title_id=borrow.title_id,
        borrow_id=borrow.id,
    )
    return borrow


def _load_own_borrow(borrow_id: int, user_id: int) -> Borrow:
    borrow = lock_for_update(db.session.query(Borrow).filter_by(id=borrow_id)).first()
    if borrow is None or borrow.user_id != user_id:
        raise NotFoundError("Record not found")
    return borrow


def request_return(borrow_id: int, user_id: int, now: datetime | None = None) -> Borrow:
    """Borrower asks to hand the copy back; blocked while a fine is unpaid."""
    now = now or utcnow()

    def _op() -> Borrow:
        borrow = _load_own_borrow(borrow_id, user_id)
        if borrow.status != BORROW_BORROWED:
            raise StateConflict(
                "Return already requested or completed",
                code="RETURN_NOT_ALLOWED",
                details={"status": borrow.status},
            )

        fine = compute_fine(borrow, now)
        if fine > 0 and not borrow.fine_paid:
            raise StateConflict(
                f"Please pay the outstanding fine of {fine / 100:.2f} before requesting return.",
                code="FINE_OUTSTANDING",
                details={"fine_cents": fine},
            )

        borrow.status = BORROW_RETURN_REQUESTED
        append_activity(
            action="RETURN_REQUESTED",
            entity_type="borrow",
            entity_id=borrow.id,
            actor_user_id=user_id,
            occurred_at=now,
        )
        db.session.commit()
        return borrow

    borrow = run_with_retry(_op)
    _notify(
        borrow.user_id,
        CATEGORY_RETURN,
        f'Return requested for "{borrow.title.title}".',
        title_id=borrow.title_id,
        borrow_id=borrow.id,
    )
    return borrow


def pay_fine(borrow_id: int, user_id: int, now: datetime | None = None) -> Borrow:
    """Settle the fine accrued so far. Payment capture itself is out of scope."""
    now = now or utcnow()

    def _op() -> Borrow:
        borrow = _load_own_borrow(borrow_id, user_id)
        fine = compute_fine(borrow, now)
        if fine <= 0:
            raise StateConflict("No fine to pay", code="NO_FINE")
        if borrow.fine_paid:
            raise StateConflict("Fine already paid", code="FINE_ALREADY_PAID")

        borrow.fine_cents = fine
        borrow.fine_paid = True
        append_activity(
            action="FINE_PAID",
            entity_type="borrow",
            entity_id=borrow.id,
            actor_user_id=user_id,
            note=f"fine_cents={fine}",
            occurred_at=now,
        )
        db.session.commit()
        return borrow

    borrow = run_with_retry(_op)
    _notify(
        borrow.user_id,
        CATEGORY_BORROW,
        f'Payment successful for fine on "{borrow.title.title}". Amount: {borrow.fine_cents / 100:.2f}',
        title_id=borrow.title_id,
        borrow_id=borrow.id,
    )
    return borrow


def renew_borrow(borrow_id: int, user_id: int, now: datetime | None = None) -> Borrow:
    """
    Extend the due date of an open borrow by the plan's borrow period.

    Raises:
        NotFoundError: unknown borrow or not the user's
        StateConflict: borrow no longer open (RENEW_NOT_ALLOWED) or already
            renewed (RENEWAL_LIMIT_REACHED)
        UpgradeRequired: plan without the renewal capability
    """
    now = now or utcnow()

    def _op() -> Borrow:
        borrow = _load_own_borrow(borrow_id, user_id)
        if borrow.status != BORROW_BORROWED:
            raise StateConflict(
                "Can only renew books that are currently borrowed",
                code="RENEW_NOT_ALLOWED",
                details={"status": borrow.status},
            )

        user = db.session.get(User, user_id)
        plan = resolve_plan(user, now=now)
        if not plan.can_renew_borrows:
            raise UpgradeRequired(
                "Book renewal is a Premium membership feature. Upgrade to Premium to renew books.",
                details={"plan": plan.name},
            )
        if borrow.renewed_count >= MAX_RENEWALS:
            raise StateConflict(
                "This book has already been renewed. Maximum renewal limit reached.",
                code="RENEWAL_LIMIT_REACHED",
                details={"renewed_count": borrow.renewed_count, "max_renewals": MAX_RENEWALS},
            )

        borrow.due_at = borrow.due_at + timedelta(days=plan.borrow_duration_days)
        borrow.renewed_count += 1
        append_activity(
            action="BORROW_RENEWED",
            entity_type="borrow",
            entity_id=borrow.id,
            actor_user_id=user_id,
            note=f"due_at extended by {plan.borrow_duration_days} day(s)",
            occurred_at=now,
        )
        db.session.commit()
        return borrow

    borrow = run_with_retry(_op)
    _notify(
        borrow.user_id,
        CATEGORY_BORROW,
        f'"{borrow.title.title}" renewed. Please return it by {borrow.due_at:%Y-%m-%d}.',
        title_id=borrow.title_id,
        borrow_id=borrow.id,
    )
    return borrow


def accept_return(borrow_id: int, actor_id: int | None = None, now: datetime | None = None) -> Borrow:
    """Staff confirms the copy is back; the copy returns to the stock ledger."""
    now = now or utcnow()

    def _op() -> Borrow:
        borrow = lock_for_update(db.session.query(Borrow).filter_by(id=borrow_id)).first()
        if borrow is None:
            raise NotFoundError("Record not found")
        if borrow.status != BORROW_RETURN_REQUESTED:
            raise StateConflict(
                "No return request found for this record",
                code="NO_RETURN_REQUEST",
                details={"status": borrow.status},
            )

        borrow.returned_at = now
        borrow.status = BORROW_RETURNED
        final_fine = compute_fine(borrow, now)
        if final_fine > borrow.fine_cents:
            borrow.fine_cents = final_fine

        release_stock(borrow.title_id, 1)
        append_activity(
            action="RETURN_ACCEPTED",
            entity_type="borrow",
            entity_id=borrow.id,
            actor_user_id=actor_id,
            occurred_at=now,
        )
        db.session.commit()
        return borrow

    borrow = run_with_retry(_op)
    _notify(
        borrow.user_id,
        CATEGORY_RETURN,
        f'Your return of "{borrow.title.title}" has been accepted.',
        title_id=borrow.title_id,
        borrow_id=borrow.id,
    )
    return borrow


def list_user_borrows(user_id: int) -> list[Borrow]:
    return (
        db.session.query(Borrow)
        .filter_by(user_id=user_id)
        .order_by(Borrow.issued_at.desc(), Borrow.id.desc())
        .all()
    )

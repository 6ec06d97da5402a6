# Overview: Entitlement store; per-user, per-title time-boxed access records.

"""
Entitlement Store

WHY: Reading access is a history of grants, not a flag. A user can add a
title, let it lapse, and add it again; purchases refresh access on delivery.
Every reader of that history (quota engine, access gate, progress tracking,
order delivery) must agree on which row counts, so the "most recent grant
wins" rule lives in exactly one function: latest_for().

INVARIANT: at most one row per (user, title) is ACTIVE with a live expiry.
The quota engine reactivates in place instead of inserting when history
exists, and upsert_order_grant demotes any other ACTIVE siblings.

Nothing here commits; callers own the transaction.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import update

from ..extensions import db
from ..models import EntitlementRecord
from ..models.entitlements import (
    ENTITLEMENT_ACTIVE,
    ENTITLEMENT_COMPLETED,
    ENTITLEMENT_EXPIRED,
    PROVENANCE_MANUAL,
    PROVENANCE_ORDER,
    VALID_ENTITLEMENT_STATUSES,
)
from ..validation import NotFoundError, ValidationError, parse_page_list, require_positive_int
from bookstack.time_utils import utcnow


def latest_for(user_id: int, title_id: int) -> EntitlementRecord | None:
    """The authoritative record for a (user, title) pair, or None."""
    return (
        db.session.query(EntitlementRecord)
        .filter_by(user_id=user_id, title_id=title_id)
        .order_by(EntitlementRecord.granted_at.desc(), EntitlementRecord.id.desc())
        .first()
    )


def count_manual_grants_since(user_id: int, since: datetime) -> int:
    """
    Count grants that consume quota: granted inside the window and not
    originating from a purchase.
    """
    return (
        db.session.query(EntitlementRecord)
        .filter(
            EntitlementRecord.user_id == user_id,
            EntitlementRecord.granted_at >= since,
            EntitlementRecord.provenance != PROVENANCE_ORDER,
        )
        .count()
    )


def insert_grant(
    user_id: int,
    title_id: int,
    *,
    now: datetime,
    duration_days: int,
    provenance: str = PROVENANCE_MANUAL,
    order_id: int | None = None,
) -> EntitlementRecord:
    record = EntitlementRecord(
        user_id=user_id,
        title_id=title_id,
        status=ENTITLEMENT_ACTIVE,
        granted_at=now,
        expires_at=now + timedelta(days=duration_days),
        provenance=provenance,
        order_id=order_id,
        progress_cursor=1,
        bookmarks=[],
    )
    db.session.add(record)
    db.session.flush()
    return record


def reactivate(
    record: EntitlementRecord,
    *,
    now: datetime,
    duration_days: int,
    provenance: str = PROVENANCE_MANUAL,
    order_id: int | None = None,
) -> EntitlementRecord:
    """Renew an existing (inactive or placeholder) record in place."""
    record.status = ENTITLEMENT_ACTIVE
    record.granted_at = now
    record.expires_at = now + timedelta(days=duration_days)
    record.completed_at = None
    record.provenance = provenance
    record.order_id = order_id
    db.session.flush()
    return record


def upsert_order_grant(
    user_id: int,
    title_id: int,
    *,
    order_id: int,
    now: datetime,
    duration_days: int,
) -> EntitlementRecord:
    """
    Create-or-refresh the purchase grant for a delivered order line.

    The latest record is refreshed in place; older ACTIVE rows for the pair
    (legacy history) are demoted so the single-live-grant invariant holds.
    """
    record = latest_for(user_id, title_id)
    if record is None:
        return insert_grant(
            user_id,
            title_id,
            now=now,
            duration_days=duration_days,
            provenance=PROVENANCE_ORDER,
            order_id=order_id,
        )

    reactivate(
        record,
        now=now,
        duration_days=duration_days,
        provenance=PROVENANCE_ORDER,
        order_id=order_id,
    )
    db.session.execute(
        update(EntitlementRecord)
        .where(
            EntitlementRecord.user_id == user_id,
            EntitlementRecord.title_id == title_id,
            EntitlementRecord.id != record.id,
            EntitlementRecord.status == ENTITLEMENT_ACTIVE,
        )
        .values(status=ENTITLEMENT_EXPIRED)
        .execution_options(synchronize_session="fetch")
    )
    return record


def create_placeholder(user_id: int, title_id: int, *, order_id: int, now: datetime) -> EntitlementRecord | None:
    """
    Record access promised by a checkout.

    Only created when the user has no history for the title, so a
    placeholder never shadows an existing grant in latest_for().
    """
    if latest_for(user_id, title_id) is not None:
        return None

    record = EntitlementRecord(
        user_id=user_id,
        title_id=title_id,
        status=ENTITLEMENT_ACTIVE,
        granted_at=now,
        expires_at=None,
        provenance=PROVENANCE_ORDER,
        order_id=order_id,
        progress_cursor=1,
        bookmarks=[],
    )
    db.session.add(record)
    db.session.flush()
    return record


def purge_placeholders(user_id: int, title_ids: list[int]) -> int:
    """Delete unactivated (no expiry) records for the given titles."""
    if not title_ids:
        return 0
    return (
        db.session.query(EntitlementRecord)
        .filter(
            EntitlementRecord.user_id == user_id,
            EntitlementRecord.title_id.in_(title_ids),
            EntitlementRecord.expires_at.is_(None),
        )
        .delete(synchronize_session=False)
    )


def list_for_user(user_id: int) -> list[EntitlementRecord]:
    return (
        db.session.query(EntitlementRecord)
        .filter_by(user_id=user_id)
        .order_by(EntitlementRecord.granted_at.desc(), EntitlementRecord.id.desc())
        .all()
    )


def get_progress(user_id: int, title_id: int) -> dict:
    record = latest_for(user_id, title_id)
    if record is None:
        raise NotFoundError("No reading progress found for this title")
    return {
        "title_id": title_id,
        "last_page": record.progress_cursor,
        "bookmarks": list(record.bookmarks or []),
        "status": record.status,
    }


def save_progress(
    user_id: int,
    title_id: int,
    *,
    last_page=None,
    bookmarks=None,
    status: str | None = None,
    now: datetime | None = None,
) -> EntitlementRecord:
    """
    Update the reading cursor, bookmarks and/or completion status on the
    authoritative record.
    """
    record = latest_for(user_id, title_id)
    if record is None:
        raise NotFoundError("No reading progress found for this title")

    if last_page is not None:
        record.progress_cursor = require_positive_int(last_page, "last_page")
    if bookmarks is not None:
        record.bookmarks = parse_page_list(bookmarks)
    if status is not None:
        status = str(status).upper()
        if status not in VALID_ENTITLEMENT_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_ENTITLEMENT_STATUSES))}"
            )
        record.status = status
        if status == ENTITLEMENT_COMPLETED and record.completed_at is None:
            record.completed_at = now or utcnow()

    db.session.flush()
    return record


def erase_for_user(user_id: int) -> int:
    """Hard delete of all history; only used by full account erasure."""
    return (
        db.session.query(EntitlementRecord)
        .filter_by(user_id=user_id)
        .delete(synchronize_session=False)
    )

# Overview: Append-only activity log for order, readlist and borrow events.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import ActivityLog


def append_activity(
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> ActivityLog:
    """
    Append an activity row inside the caller's transaction.

    - No domain logic here.
    - No deletes/updates of existing rows.
    - Flushes but never commits; the caller owns the transaction.
    """
    entry = ActivityLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        note=note,
    )
    # Left unset when None so the db default applies
    if occurred_at is not None:
        entry.occurred_at = occurred_at
    db.session.add(entry)
    db.session.flush()
    return entry


def list_activity(entity_type: str, entity_id: int, *, limit: int = 100) -> list[ActivityLog]:
    return (
        db.session.query(ActivityLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(ActivityLog.occurred_at.asc(), ActivityLog.id.asc())
        .limit(limit)
        .all()
    )

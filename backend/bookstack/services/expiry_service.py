# Overview: Expiry sweeper; flips lapsed ACTIVE entitlements to EXPIRED in bulk.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import EntitlementRecord
from ..models.entitlements import ENTITLEMENT_ACTIVE, ENTITLEMENT_EXPIRED
from bookstack.time_utils import utcnow


def sweep_expired_entitlements(now: datetime | None = None) -> dict:
    """
    Expire every ACTIVE record whose expiry has passed, in one statement.

    Idempotent: a second run at the same instant matches nothing.
    Placeholders (no expiry) are never touched. No notifications. Commits.
    """
    now = now or utcnow()
    result = db.session.execute(
        update(EntitlementRecord)
        .where(
            EntitlementRecord.status == ENTITLEMENT_ACTIVE,
            EntitlementRecord.expires_at.is_not(None),
            EntitlementRecord.expires_at < now,
        )
        .values(status=ENTITLEMENT_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()

    expired_count = result.rowcount or 0
    current_app.logger.info("Expiry sweep expired %s entitlement(s)", expired_count)
    return {"expired_count": expired_count}

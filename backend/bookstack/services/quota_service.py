# Overview: Quota engine; monthly manual-grant limits for the readlist.

"""
Quota Engine

Decides whether a user may add a title to their readlist right now.

DECISION ORDER (first failing rule wins, nothing is written on failure):
1. Restricted title and plan lacks the capability -> UpgradeRequired
2. Latest record for the pair is ACTIVE and unexpired -> AlreadyActive
3. Manual grants inside the current cycle >= limit -> QuotaExceeded
4. Reactivate the latest (inactive) record in place, or insert a new one

CYCLES: see billing_cycle. Grants with ORDER provenance never count.

CONCURRENCY: the user row is locked for the duration of the decision so
two simultaneous requests from the same user cannot both squeeze under
the limit (SQLite serializes writers anyway).
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import EntitlementRecord, MembershipPlan, Title, User
from ..models.entitlements import PROVENANCE_MANUAL
from ..validation import NotFoundError, StateConflict
from . import entitlement_service
from .activity_service import append_activity
from .billing_cycle import cycle_window
from .concurrency import lock_for_update, run_with_retry
from .membership_service import resolve_plan
from bookstack.time_utils import to_utc_z, utcnow


# Applied when a free plan is seeded with a zero limit
DEFAULT_FREE_TIER_GRANT_LIMIT = 3


class UpgradeRequired(StateConflict):
    status_code = 403
    code = "UPGRADE_REQUIRED"


class AlreadyActive(StateConflict):
    code = "ALREADY_ACTIVE"


class QuotaExceeded(StateConflict):
    code = "QUOTA_EXCEEDED"


def resolve_limit(plan: MembershipPlan) -> int:
    limit = plan.monthly_grant_limit or 0
    if limit == 0 and plan.is_free_tier:
        return DEFAULT_FREE_TIER_GRANT_LIMIT
    return limit


def _load_user(user_id: int, *, lock: bool = False) -> User:
    query = db.session.query(User).filter_by(id=user_id)
    if lock:
        query = lock_for_update(query)
    user = query.first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_quota_status(user_id: int, now: datetime | None = None) -> dict:
    """Current cycle usage for the readlist quota. Commits a plan auto-assignment."""
    now = now or utcnow()
    user = _load_user(user_id)
    plan = resolve_plan(user, now=now)
    db.session.commit()

    cycle_start, _ = cycle_window(plan.tier, user.enrollment_start_date, now)
    limit = resolve_limit(plan)
    used = entitlement_service.count_manual_grants_since(user.id, cycle_start)
    return {
        "plan": plan.name,
        "limit": limit,
        "used": used,
        "remaining": max(limit - used, 0),
        "cycle_start": to_utc_z(cycle_start),
    }


def request_entitlement(user_id: int, title_id: int, now: datetime | None = None) -> EntitlementRecord:
    """
    Grant time-boxed reading access to a title, subject to the plan quota.

    Raises:
        NotFoundError: unknown user/title, or no plan can be resolved
        UpgradeRequired: restricted title on a plan without the capability
        AlreadyActive: the title is already readable
        QuotaExceeded: cycle limit reached (details carry limit and used)
    """
    now = now or utcnow()

    def _op() -> EntitlementRecord:
        user = _load_user(user_id, lock=True)
        plan = resolve_plan(user, now=now)

        title = db.session.get(Title, title_id)
        if title is None:
            raise NotFoundError("Title not found")

        if title.is_restricted and not plan.can_access_restricted:
            raise UpgradeRequired(
                f'"{title.title}" is a restricted title. Please upgrade your membership to read it, '
                "or you can purchase it directly.",
                details={"title_id": title.id, "plan": plan.name},
            )

        existing = entitlement_service.latest_for(user.id, title.id)
        if existing is not None and existing.is_live(now):
            raise AlreadyActive(
                "Title is already active in your readlist",
                details={
                    "title_id": title.id,
                    "status": existing.status,
                    "expires_at": to_utc_z(existing.expires_at),
                },
            )

        cycle_start, _ = cycle_window(plan.tier, user.enrollment_start_date, now)
        limit = resolve_limit(plan)
        used = entitlement_service.count_manual_grants_since(user.id, cycle_start)
        if used >= limit:
            if plan.is_free_tier:
                message = (
                    f"You have reached your monthly limit of {limit} books. "
                    "Wait until next month or upgrade your plan."
                )
            else:
                message = (
                    f"You have reached your monthly limit of {limit} books. "
                    "Please wait until next month to add more."
                )
            raise QuotaExceeded(
                message,
                details={
                    "limit": limit,
                    "used": used,
                    "plan": plan.name,
                    "cycle_start": to_utc_z(cycle_start),
                },
            )

        if existing is not None:
            record = entitlement_service.reactivate(
                existing,
                now=now,
                duration_days=plan.access_duration_days,
                provenance=PROVENANCE_MANUAL,
            )
        else:
            record = entitlement_service.insert_grant(
                user.id,
                title.id,
                now=now,
                duration_days=plan.access_duration_days,
                provenance=PROVENANCE_MANUAL,
            )

        append_activity(
            action="ADD_TO_READLIST",
            entity_type="title",
            entity_id=title.id,
            actor_user_id=user.id,
            note=f"Added title to readlist: {title.title}",
            occurred_at=now,
        )
        db.session.commit()
        return record

    return run_with_retry(_op)

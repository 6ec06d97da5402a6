# Overview: Membership plan reference data; plan resolution and plan changes.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import MembershipPlan, User
from ..models.catalog import PLAN_TIER_FREE, PLAN_TIER_PAID
from ..validation import NotFoundError
from .activity_service import append_activity
from bookstack.time_utils import utcnow


DEFAULT_FREE_PLAN_NAME = "basic"

DEFAULT_PLANS = [
    {
        "name": "basic",
        "display_name": "Basic",
        "tier": PLAN_TIER_FREE,
        "price_cents": 0,
        "monthly_grant_limit": 3,
        "access_duration_days": 14,
        "delivery_fee_waived": False,
        "can_access_restricted": False,
        "borrow_limit": 3,
        "borrow_duration_days": 7,
        "can_renew_borrows": False,
        "description": "Perfect for casual readers",
    },
    {
        "name": "standard",
        "display_name": "Standard",
        "tier": PLAN_TIER_PAID,
        "price_cents": 4900,
        "monthly_grant_limit": 5,
        "access_duration_days": 21,
        "delivery_fee_waived": False,
        "can_access_restricted": False,
        "borrow_limit": 5,
        "borrow_duration_days": 14,
        "can_renew_borrows": False,
        "description": "Great for regular readers",
    },
    {
        "name": "premium",
        "display_name": "Premium",
        "tier": PLAN_TIER_PAID,
        "price_cents": 9900,
        "monthly_grant_limit": 10,
        "access_duration_days": 30,
        "delivery_fee_waived": True,
        "can_access_restricted": True,
        "borrow_limit": 10,
        "borrow_duration_days": 21,
        "can_renew_borrows": True,
        "description": "Ultimate reading experience",
    },
]


def seed_default_plans() -> dict:
    """
    Insert or update the default plans (idempotent).

    Returns {"created": n, "updated": m}. Commits.
    """
    created = 0
    updated = 0
    for values in DEFAULT_PLANS:
        plan = db.session.query(MembershipPlan).filter_by(name=values["name"]).first()
        if plan is None:
            db.session.add(MembershipPlan(**values))
            created += 1
        else:
            for key, value in values.items():
                setattr(plan, key, value)
            updated += 1
    db.session.commit()
    return {"created": created, "updated": updated}


def list_plans() -> list[MembershipPlan]:
    return db.session.query(MembershipPlan).order_by(MembershipPlan.price_cents.asc()).all()


def get_plan_by_name(name: str) -> MembershipPlan | None:
    return db.session.query(MembershipPlan).filter_by(name=name).first()


def resolve_plan(user: User, *, now: datetime | None = None) -> MembershipPlan:
    """
    Return the user's plan, assigning the free plan on first use.

    Assignment flushes but does not commit.

    Raises:
        NotFoundError: user has no plan and no free plan is seeded
    """
    if user.membership_plan is not None:
        return user.membership_plan

    plan = get_plan_by_name(DEFAULT_FREE_PLAN_NAME)
    if plan is None:
        raise NotFoundError("Membership plan not found")

    user.membership_plan = plan
    if user.enrollment_start_date is None:
        user.enrollment_start_date = now or utcnow()
    db.session.flush()
    return plan


def change_plan(user_id: int, plan_name: str, *, actor_user_id: int | None = None, now: datetime | None = None) -> User:
    """
    Move a user onto another plan. The enrollment date restarts so paid
    quota cycles anchor on the change. Commits.
    """
    now = now or utcnow()

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    plan = get_plan_by_name(plan_name)
    if plan is None:
        raise NotFoundError(f"Membership plan '{plan_name}' not found")

    user.membership_plan = plan
    user.enrollment_start_date = now
    append_activity(
        action="MEMBERSHIP_CHANGED",
        entity_type="user",
        entity_id=user.id,
        actor_user_id=actor_user_id or user.id,
        note=f"Membership changed to {plan.display_name}",
        occurred_at=now,
    )
    db.session.commit()
    return user

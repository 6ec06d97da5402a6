# Overview: Quota cycle window math (calendar month vs enrollment anniversary).

"""
Billing cycle windows for the monthly grant quota.

FREE plans count grants from the first of the current calendar month.
PAID plans count from the most recent monthly anniversary of the
enrollment date. Anniversary days that do not exist in a month clamp to
that month's last day (enrolled on the 31st -> cycle starts Feb 28/29).

All functions are pure; datetimes are UTC-naive.
"""

from __future__ import annotations

from datetime import date, datetime

from ..models.catalog import PLAN_TIER_PAID
from bookstack.time_utils import days_in_month, start_of_day


def clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, days_in_month(year, month)))


def _previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def anniversary_cycle_start(enrollment_day: int, now: datetime) -> datetime:
    """
    Midnight of the most recent anniversary of `enrollment_day` at or
    before `now`.
    """
    candidate = start_of_day(clamp_day(now.year, now.month, enrollment_day))
    if candidate <= now:
        return candidate

    year, month = _previous_month(now.year, now.month)
    return start_of_day(clamp_day(year, month, enrollment_day))


def calendar_cycle_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1)


def cycle_window(plan_tier: str, enrollment_start: datetime | None, now: datetime) -> tuple[datetime, datetime]:
    """
    Return (cycle_start, now) for a plan tier.

    A PAID plan with no recorded enrollment date falls back to the
    calendar month.
    """
    if plan_tier == PLAN_TIER_PAID and enrollment_start is not None:
        return anniversary_cycle_start(enrollment_start.day, now), now
    return calendar_cycle_start(now), now

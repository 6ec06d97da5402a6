"""
Quota cycle window tests.

Verifies:
- Calendar windows start on the 1st at midnight
- Anniversary windows clamp to short months (28/29/30 day months)
- Previous-month fallback, including across the year boundary
- PAID plans without an enrollment date fall back to the calendar month
"""

from datetime import date, datetime

import pytest

from bookstack.models.catalog import PLAN_TIER_FREE, PLAN_TIER_PAID
from bookstack.services.billing_cycle import (
    anniversary_cycle_start,
    calendar_cycle_start,
    clamp_day,
    cycle_window,
)


class TestClampDay:

    @pytest.mark.parametrize(
        "year,month,day,expected",
        [
            (2026, 2, 31, date(2026, 2, 28)),
            (2028, 2, 31, date(2028, 2, 29)),
            (2026, 4, 31, date(2026, 4, 30)),
            (2026, 1, 31, date(2026, 1, 31)),
            (2026, 2, 15, date(2026, 2, 15)),
        ],
    )
    def test_clamps_to_month_length(self, year, month, day, expected):
        assert clamp_day(year, month, day) == expected


class TestCalendarCycle:

    def test_first_of_month_at_midnight(self):
        assert calendar_cycle_start(datetime(2026, 3, 15, 13, 45)) == datetime(2026, 3, 1)

    def test_exactly_at_boundary(self):
        assert calendar_cycle_start(datetime(2026, 3, 1, 0, 0)) == datetime(2026, 3, 1)


class TestAnniversaryCycle:

    def test_anniversary_already_passed_this_month(self):
        assert anniversary_cycle_start(10, datetime(2026, 3, 15, 9, 0)) == datetime(2026, 3, 10)

    def test_anniversary_not_yet_reached_uses_previous_month(self):
        assert anniversary_cycle_start(20, datetime(2026, 3, 15, 9, 0)) == datetime(2026, 2, 20)

    def test_anniversary_today_starts_at_midnight(self):
        assert anniversary_cycle_start(15, datetime(2026, 3, 15, 0, 0)) == datetime(2026, 3, 15)

    def test_enrolled_31st_clamps_in_february(self):
        assert anniversary_cycle_start(31, datetime(2026, 2, 28, 10, 0)) == datetime(2026, 2, 28)

    def test_enrolled_31st_leap_year(self):
        assert anniversary_cycle_start(31, datetime(2028, 2, 29, 10, 0)) == datetime(2028, 2, 29)

    def test_enrolled_30th_before_clamped_day_falls_back(self):
        # Feb 27th: clamped anniversary (Feb 28) is in the future -> Jan 30
        assert anniversary_cycle_start(30, datetime(2026, 2, 27, 10, 0)) == datetime(2026, 1, 30)

    def test_previous_month_fallback_also_clamps(self):
        # Mar 29th with day 31: Mar 31 is ahead, Feb clamps to the 28th
        assert anniversary_cycle_start(31, datetime(2026, 3, 29, 10, 0)) == datetime(2026, 2, 28)

    def test_fallback_across_year_boundary(self):
        assert anniversary_cycle_start(20, datetime(2026, 1, 5, 10, 0)) == datetime(2025, 12, 20)

    def test_enrolled_29th_in_30_day_month(self):
        assert anniversary_cycle_start(29, datetime(2026, 4, 30, 0, 0)) == datetime(2026, 4, 29)


class TestCycleWindow:

    def test_free_tier_uses_calendar_month(self):
        now = datetime(2026, 3, 15, 12, 0)
        start, end = cycle_window(PLAN_TIER_FREE, datetime(2025, 11, 20), now)
        assert start == datetime(2026, 3, 1)
        assert end == now

    def test_paid_tier_uses_anniversary(self):
        now = datetime(2026, 3, 15, 12, 0)
        start, _ = cycle_window(PLAN_TIER_PAID, datetime(2025, 11, 20, 8, 30), now)
        assert start == datetime(2026, 2, 20)

    def test_paid_tier_without_enrollment_falls_back_to_calendar(self):
        now = datetime(2026, 3, 15, 12, 0)
        start, _ = cycle_window(PLAN_TIER_PAID, None, now)
        assert start == datetime(2026, 3, 1)

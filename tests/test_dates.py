"""
Tests for the date helpers used by generation and reconciliation.
"""

from datetime import date, datetime

from scoopify.utils.dates import (
    Weekday, at_hour, billing_month_key, occurrence_in_week, period_key,
    start_of_day, week_bounds
)

from helpers import WEDNESDAY, WEEK_MONDAY


def test_period_key_is_iso_week():
    assert period_key(WEEK_MONDAY) == "2026-W43"
    # ISO week 1 of 2026 starts on Monday 2025-12-29
    assert period_key(date(2025, 12, 29)) == "2026-W01"


def test_week_bounds_monday_to_sunday():
    assert week_bounds(WEDNESDAY) == (WEEK_MONDAY, date(2026, 10, 25))


def test_occurrence_in_week():
    assert occurrence_in_week(WEEK_MONDAY, Weekday.WEDNESDAY) == WEDNESDAY
    assert occurrence_in_week(date(2026, 10, 25), Weekday.MONDAY) == WEEK_MONDAY


def test_weekday_from_date():
    assert Weekday.from_date(WEDNESDAY) == Weekday.WEDNESDAY
    assert Weekday.SUNDAY.offset == 6


def test_day_helpers():
    assert at_hour(WEDNESDAY, 7) == datetime(2026, 10, 21, 7, 0)
    assert start_of_day(datetime(2026, 10, 21, 15, 30)) == datetime(2026, 10, 21)
    assert billing_month_key(WEDNESDAY) == "2026-10"

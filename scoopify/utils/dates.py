"""
Date helpers shared by the schedulers and the service lifecycle.

All datetimes handled by the backend are naive UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Tuple


class Weekday(str, Enum):
    """Day of week a subscription is serviced on."""
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def offset(self) -> int:
        """Monday == 0, matching date.weekday()."""
        return list(Weekday).index(self)

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def at_hour(day: date, hour: int) -> datetime:
    """The given day at hour:00."""
    return datetime.combine(day, time(hour=hour))


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday and Sunday of the ISO week containing day."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def period_key(day: date) -> str:
    """ISO week key, e.g. 2026-W42."""
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def billing_month_key(day: date) -> str:
    return f"{day.year}-{day.month:02d}"


def occurrence_in_week(day: date, weekday: Weekday) -> date:
    """Date of the given weekday inside the ISO week containing day."""
    monday, _ = week_bounds(day)
    return monday + timedelta(days=weekday.offset)

"""Date helpers shared by models and calendar/analytics services.

Timestamps are stored as naive UTC datetimes so values read back from
SQLite compare cleanly with freshly computed ones.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_range(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def month_range(year: int, month: int) -> tuple[datetime, datetime]:
    """Return [first day 00:00, first day of next month 00:00)."""
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    start = datetime(year, month, 1)
    days = calendar.monthrange(year, month)[1]
    return start, start + timedelta(days=days)


def week_range(year: int, month: int, week: int) -> tuple[datetime, datetime]:
    """Return the Sunday-started `week` (1-based) of the given month.

    Week 1 is the week containing the first of the month, so it may
    start in the previous month.
    """
    if week < 1 or week > 6:
        raise ValueError("week must be between 1 and 6")
    first = date(year, month, 1)
    # date.weekday(): Monday=0 .. Sunday=6
    offset = (first.weekday() + 1) % 7
    sunday = first - timedelta(days=offset) + timedelta(weeks=week - 1)
    start = datetime.combine(sunday, time.min)
    return start, start + timedelta(days=7)


def months_back(now: datetime, count: int) -> list[tuple[int, int]]:
    """Return (year, month) pairs for the last `count` months, oldest first."""
    out = []
    y, m = now.year, now.month
    for _ in range(count):
        out.append((y, m))
        m -= 1
        if m == 0:
            y, m = y - 1, 12
    return list(reversed(out))


def iso(value: datetime | None) -> str | None:
    """Render a stored naive-UTC datetime as an ISO string with `Z`."""
    if value is None:
        return None
    return to_utc_naive(value).isoformat() + "Z"

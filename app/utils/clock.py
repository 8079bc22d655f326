"""UTC clock helpers and calendar-month period arithmetic.

All engine timestamps are naive UTC datetimes. Services take a ``clock``
callable so time-dependent rules can be driven by a simulated clock.
"""

import calendar
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_period(now: datetime) -> tuple[datetime, datetime]:
    """Return the calendar month containing ``now``.

    The period runs from the first day at 00:00:00 to the last day at
    23:59:59.
    """
    period_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_day = calendar.monthrange(now.year, now.month)[1]
    period_end = period_start.replace(day=last_day, hour=23, minute=59, second=59)
    return period_start, period_end


def add_months(value: datetime, months: int = 1) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)

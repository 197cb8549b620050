"""Monthly period arithmetic.

A period is a pure function of a stored anchor and a point in time, so
sweeps and rollovers can be replayed deterministically against any clock.
"""

import calendar
from datetime import datetime, timedelta, timezone

# Owners without an allowance count usage in calendar months
CALENDAR_ANCHOR = datetime(2000, 1, 1, tzinfo=timezone.utc)

# "Never expires" is a far-future date so sweep logic stays uniform
NEVER_EXPIRES = datetime(2999, 12, 31, tzinfo=timezone.utc)

_ONE_TICK = timedelta(microseconds=1)


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by whole months, clamping the day to the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_bounds(anchor: datetime, at: datetime) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` monthly period containing ``at``.

    Boundaries are always computed from the anchor itself, so an anchor on
    the 31st yields the 28th/29th in February and the 31st again in March.
    """
    months = (at.year - anchor.year) * 12 + (at.month - anchor.month)
    while add_months(anchor, months) > at:
        months -= 1
    while add_months(anchor, months + 1) <= at:
        months += 1
    return add_months(anchor, months), add_months(anchor, months + 1)


def last_closed_period(anchor: datetime, at: datetime) -> tuple[datetime, datetime]:
    """Return the most recent period that ended at or before ``at``."""
    current_start, _ = period_bounds(anchor, at)
    return period_bounds(anchor, current_start - _ONE_TICK)

"""
Calendar arithmetic for analytics ranges.

All day arithmetic happens on UTC calendar dates. Local (merchant
timezone) dates are only produced at the edge by ``ms_to_date_string``,
which resolves zones through a memoized factory.
"""

import calendar
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Iterator, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pnl_engine.models.ranges import (
    DAY_MS,
    DateRange,
    date_to_ms,
    ms_to_date,
    parse_iso_date,
)
from pnl_engine.utils.logging import get_logger

logger = get_logger(__name__)


def ms_to_iso_date(ms: int) -> str:
    return ms_to_date(ms).isoformat()


def inclusive_day_span(start_date: str, end_date: str) -> int:
    """
    Number of calendar days covered by ``[start_date, end_date]``.

    Returns 0 when either end is unparsable or the end precedes the start,
    otherwise at least 1.
    """
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start is None or end is None or end < start:
        return 0
    return (end - start).days + 1


def shift_date_string(value: str, delta_days: int) -> str:
    """Shift an ISO date by ``delta_days`` in UTC; unparsable input is returned unchanged."""
    parsed = parse_iso_date(value)
    if parsed is None:
        return value
    return (parsed + timedelta(days=delta_days)).isoformat()


def derive_previous_range(date_range: DateRange) -> Optional[DateRange]:
    """
    The range of identical length that ends the day before ``date_range`` starts.

    Returns None when the range spans zero days.
    """
    span = inclusive_day_span(date_range.start_date, date_range.end_date)
    if span <= 0:
        return None
    return DateRange(
        start_date=shift_date_string(date_range.start_date, -span),
        end_date=shift_date_string(date_range.start_date, -1),
    )


def iter_date_strings(start_date: str, end_date: str) -> Iterator[str]:
    """Yield every ISO date from ``start_date`` to ``end_date`` inclusive."""
    span = inclusive_day_span(start_date, end_date)
    start = parse_iso_date(start_date)
    for offset in range(span):
        yield (start + timedelta(days=offset)).isoformat()


# =============================================================================
# Week and month boundaries
# =============================================================================


def start_of_week(value: date) -> date:
    """Monday on or before ``value``."""
    return value - timedelta(days=value.weekday())


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def is_full_calendar_month(date_range: DateRange) -> bool:
    """Whether the range is exactly the 1st through the last day of one month."""
    start, end = date_range.start, date_range.end
    return start.day == 1 and end == end_of_month(start)


def previous_calendar_month(date_range: DateRange) -> DateRange:
    """The full calendar month immediately before the month ``date_range`` starts in."""
    last_day = start_of_month(date_range.start) - timedelta(days=1)
    return DateRange(start_date=start_of_month(last_day), end_date=last_day)


# =============================================================================
# Timezone-local dates
# =============================================================================


@lru_cache(maxsize=128)
def get_zone(name: str) -> Optional[ZoneInfo]:
    """Memoized zone lookup; unknown zone names resolve to None."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("timezone_not_found", timezone=name)
        return None


def ms_to_date_string(
    ms: Optional[float],
    timezone_name: Optional[str] = None,
    offset_minutes: Optional[float] = None,
) -> Optional[str]:
    """
    Calendar date of the instant ``ms`` as seen by a merchant.

    The named timezone wins when it resolves; otherwise a fixed UTC offset
    in minutes is applied; otherwise the UTC date is returned. Non-numeric
    input yields None.
    """
    if isinstance(ms, bool) or not isinstance(ms, (int, float)):
        return None
    try:
        instant = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None

    if timezone_name:
        zone = get_zone(timezone_name)
        if zone is not None:
            return instant.astimezone(zone).date().isoformat()

    if isinstance(offset_minutes, (int, float)) and not isinstance(offset_minutes, bool):
        return (instant + timedelta(minutes=offset_minutes)).date().isoformat()

    return instant.date().isoformat()


def trailing_range(
    days: int,
    now_ms: int,
    timezone_name: Optional[str] = None,
) -> DateRange:
    """
    The last ``days`` calendar days ending on the merchant's current local date.

    Args:
        days: Number of days to include (minimum 1)
        now_ms: Current instant in epoch milliseconds
        timezone_name: IANA zone of the merchant; UTC when None or unknown

    Returns:
        DateRange ending today in the merchant's timezone
    """
    today = ms_to_date_string(now_ms, timezone_name) or ms_to_iso_date(int(now_ms))
    span = max(1, int(days))
    return DateRange(start_date=shift_date_string(today, -(span - 1)), end_date=today)


__all__ = [
    "DAY_MS",
    "date_to_ms",
    "ms_to_date",
    "parse_iso_date",
    "ms_to_iso_date",
    "inclusive_day_span",
    "shift_date_string",
    "derive_previous_range",
    "iter_date_strings",
    "start_of_week",
    "start_of_month",
    "end_of_month",
    "is_full_calendar_month",
    "previous_calendar_month",
    "get_zone",
    "ms_to_date_string",
    "trailing_range",
]

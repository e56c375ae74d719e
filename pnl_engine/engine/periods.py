"""
Period Bucketing - canonical daily/weekly/monthly buckets over a range.

Weeks start on Monday; months follow calendar boundaries. Before
enumerating, the table range is aligned to whole buckets
(``derive_table_range_for_granularity``), so the displayed table may span
more days than the selected range. KPI totals keep using the selected range.
"""

from datetime import date, timedelta
from typing import Optional, Union

from pnl_engine.models.enums import Granularity
from pnl_engine.models.pnl import PeriodDefinition
from pnl_engine.models.ranges import DAY_MS, DateRange, date_to_ms
from pnl_engine.utils.dates import end_of_month, parse_iso_date, start_of_month, start_of_week


def coerce_granularity(granularity: Union[Granularity, str]) -> Granularity:
    try:
        return Granularity(granularity)
    except ValueError as e:
        raise ValueError(f"Unsupported granularity: {granularity!r}") from e


def derive_table_range_for_granularity(
    date_range: DateRange,
    granularity: Union[Granularity, str],
) -> DateRange:
    """
    Expand ``date_range`` so it starts and ends on bucket boundaries.

    Daily ranges are unchanged, weekly ranges grow to Monday..Sunday, and
    monthly ranges grow to the first and last day of the covering months.
    """
    granularity = coerce_granularity(granularity)
    if granularity == Granularity.MONTHLY:
        return DateRange(
            start_date=start_of_month(date_range.start),
            end_date=end_of_month(date_range.end),
        )
    if granularity == Granularity.WEEKLY:
        return DateRange(
            start_date=start_of_week(date_range.start),
            end_date=start_of_week(date_range.end) + timedelta(days=6),
        )
    return date_range


def period_for_date(day: date, granularity: Union[Granularity, str]) -> PeriodDefinition:
    """The bucket containing ``day``."""
    granularity = coerce_granularity(granularity)

    if granularity == Granularity.WEEKLY:
        start = start_of_week(day)
        end = start + timedelta(days=6)
        start_iso, end_iso = start.isoformat(), end.isoformat()
        return PeriodDefinition(
            key=f"{start_iso}_{end_iso}",
            label=f"{start_iso} – {end_iso}",
            date=start_iso,
            start_ms=date_to_ms(start),
            end_ms=date_to_ms(end) + DAY_MS - 1,
            granularity=granularity,
        )

    if granularity == Granularity.MONTHLY:
        start = start_of_month(day)
        end = end_of_month(day)
        key = start.strftime("%Y-%m")
        return PeriodDefinition(
            key=key,
            label=key,
            date=start.isoformat(),
            start_ms=date_to_ms(start),
            end_ms=date_to_ms(end) + DAY_MS - 1,
            granularity=granularity,
        )

    iso = day.isoformat()
    return PeriodDefinition(
        key=iso,
        label=iso,
        date=iso,
        start_ms=date_to_ms(day),
        end_ms=date_to_ms(day) + DAY_MS - 1,
        granularity=granularity,
    )


def period_key_for(day: str, granularity: Union[Granularity, str]) -> Optional[str]:
    """Bucket key for an ISO date string, or None when the date is unparsable."""
    parsed = parse_iso_date(day)
    if parsed is None:
        return None
    return period_for_date(parsed, granularity).key


def build_periods(
    date_range: DateRange,
    granularity: Union[Granularity, str],
) -> list[PeriodDefinition]:
    """
    Buckets covering ``date_range`` in chronological order.

    A weekly range that does not start on a Monday begins with the week
    containing its start; a monthly range begins with the month containing
    its start.

    Raises:
        ValueError: If ``granularity`` is not daily, weekly, or monthly
    """
    granularity = coerce_granularity(granularity)
    periods = []
    cursor = date_range.start
    end = date_range.end
    while cursor <= end:
        period = period_for_date(cursor, granularity)
        periods.append(period)
        cursor = date.fromisoformat(period.end_date) + timedelta(days=1)
    return periods

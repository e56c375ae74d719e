"""
Daily Metrics Merger - folds per-day snapshots into range aggregates.

The fold is a plain field-by-field sum, so it is commutative and
associative over records: merging a range equals combining the merges of
any partition of it. Two fields are not plain sums:

- click-through rate is averaged over non-zero samples (sum and count are
  accumulated, the mean is taken on read)
- gross sales falls back to revenue + discounts for rows that predate the
  explicit gross-sales field

Also hosts the coverage check (which requested days have a record) and the
ad-insight fold used by analytics sources.
"""

from typing import Iterable, Mapping

from pnl_engine.models.metrics import (
    AdInsightTotals,
    AggregatedMetrics,
    ChannelRevenue,
    CoverageReport,
    DailyMetricRecord,
)
from pnl_engine.models.ranges import DateRange
from pnl_engine.utils.dates import inclusive_day_span, iter_date_strings, parse_iso_date
from pnl_engine.utils.logging import get_logger
from pnl_engine.utils.numeric import to_number

logger = get_logger(__name__)

# Ad-insight rows at this level (or with no level) describe the whole account
ACCOUNT_LEVEL_ENTITY_TYPES = frozenset({"", "account"})

AD_INSIGHT_FIELDS = (
    "spend",
    "impressions",
    "clicks",
    "unique_clicks",
    "conversions",
    "conversion_value",
    "reach",
)


def merge_daily_metrics(records: Iterable[DailyMetricRecord]) -> AggregatedMetrics:
    """
    Fold daily snapshots into one additive aggregate.

    Args:
        records: Daily metric snapshots in any order

    Returns:
        AggregatedMetrics whose numeric fields are all finite
    """
    totals = AggregatedMetrics()
    channels: dict[str, list[float]] = {}

    for record in records:
        totals.days += 1
        totals.revenue += record.revenue
        totals.gross_sales += record.effective_gross_sales
        totals.discounts += record.discounts
        totals.refunds += record.refunds
        totals.orders += record.orders
        totals.units_sold += record.units_sold
        totals.cogs += record.cogs
        totals.shipping_costs += record.shipping_cost
        totals.transaction_fees += record.transaction_fees
        totals.handling_fees += record.handling_fees
        totals.taxes += record.taxes
        totals.marketing_cost += record.marketing_cost
        totals.paid_customers += record.paid_customers
        totals.total_customers += record.total_customers
        totals.cancelled_orders += record.cancelled_orders
        totals.returned_orders += record.returned_orders
        totals.sessions += record.sessions
        totals.visitors += record.visitors
        totals.conversions += record.conversions

        if record.blended_ctr:
            totals.ctr_sum += record.blended_ctr
            totals.ctr_count += 1

        if record.fulfilled_orders is not None:
            totals.fulfilled_reported = True
            totals.reported_fulfilled_orders += record.fulfilled_orders

        if record.customer_breakdown is not None:
            totals.new_customers += record.customer_breakdown.new_customers
            totals.returning_customers += record.customer_breakdown.returning_customers
            totals.repeat_customers += record.customer_breakdown.repeat_customers

        if record.payment_breakdown is not None:
            totals.prepaid_orders += record.payment_breakdown.prepaid_orders
            totals.cod_orders += record.payment_breakdown.cod_orders
            totals.other_orders += record.payment_breakdown.other_orders

        for channel in record.channel_revenue:
            bucket = channels.setdefault(channel.name, [0.0, 0.0])
            bucket[0] += channel.revenue
            bucket[1] += channel.orders

    totals.channels = {
        name: ChannelRevenue(name=name, revenue=to_number(revenue), orders=to_number(orders))
        for name, (revenue, orders) in channels.items()
    }
    return _finalize(totals)


def _finalize(totals: AggregatedMetrics) -> AggregatedMetrics:
    """Replace any non-finite sum (overflow from extreme inputs) with 0."""
    for name, value in totals:
        if isinstance(value, float):
            setattr(totals, name, to_number(value))
    return totals


def compute_coverage(records: Iterable[DailyMetricRecord], date_range: DateRange) -> CoverageReport:
    """
    Report which days of ``date_range`` have at least one record.

    Records with unparsable dates or dates outside the range do not count
    towards coverage.

    Args:
        records: Daily snapshots returned for the range
        date_range: Requested range

    Returns:
        CoverageReport with first/last available day and missing days
    """
    available = sorted(
        {
            record.date
            for record in records
            if parse_iso_date(record.date) is not None and date_range.contains(record.date)
        }
    )
    expected_days = inclusive_day_span(date_range.start_date, date_range.end_date)
    first_available = available[0] if available else None
    last_available = available[-1] if available else None

    present = set(available)
    missing = [day for day in iter_date_strings(date_range.start_date, date_range.end_date) if day not in present]

    has_full_coverage = (
        first_available is not None
        and first_available <= date_range.start_date
        and last_available >= date_range.end_date
        and len(available) >= expected_days
    )

    return CoverageReport(
        requested_start=date_range.start_date,
        requested_end=date_range.end_date,
        first_available=first_available,
        last_available=last_available,
        expected_days=expected_days,
        available_days=len(available),
        missing_dates=missing,
        has_full_coverage=has_full_coverage,
    )


def merge_ad_insights(rows: Iterable[Mapping]) -> AdInsightTotals:
    """
    Sum ad-insight rows for a window, preferring account-level rows.

    Platforms report the same spend at account, campaign, and ad level;
    summing every level would multiply it. Account-level rows (entity type
    "account" or missing) are used when any exist, otherwise all rows.

    Args:
        rows: Mappings with an optional ``entity_type`` and the numeric
            insight fields

    Returns:
        AdInsightTotals for the window
    """
    rows = list(rows)
    account_rows = [
        row
        for row in rows
        if str(row.get("entity_type") or row.get("entityType") or "").strip().lower()
        in ACCOUNT_LEVEL_ENTITY_TYPES
    ]
    selected = account_rows if account_rows else rows

    totals = {name: 0.0 for name in AD_INSIGHT_FIELDS}
    for row in selected:
        for name in AD_INSIGHT_FIELDS:
            totals[name] += to_number(row.get(name))

    logger.debug(
        "ad_insights_merged",
        rows=len(rows),
        account_level_rows=len(account_rows),
    )
    return AdInsightTotals(**totals)

"""
P&L Table Builder - bucketed P&L with a reconciled Total row.

Two ranges are tracked throughout a request:

- the table range: the selected range expanded to whole buckets; it drives
  bucket generation, cost allocation context, and the Total row
- the selected range: exactly what the caller asked for; it drives the KPI
  bundle and its comparison against the previous range of equal length

Cost policies are evaluated once against the table range and split across
buckets by the allocator, so bucket cost lines always sum to the Total
row's cost lines. The Total row itself is computed from the whole table
range aggregate (not by adding bucket rows), because retention and shipping
deduplication are not additive across buckets.

Records whose date cannot be parsed are left out of every bucket but still
count towards the table and selected totals.
"""

import asyncio
from typing import Optional, Union

import structlog

from pnl_engine.config import Settings, get_settings
from pnl_engine.engine.cost_allocator import CostAllocator
from pnl_engine.engine.kpis import build_kpi_bundle, compute_pnl_metrics
from pnl_engine.engine.merger import merge_daily_metrics
from pnl_engine.engine.periods import (
    build_periods,
    coerce_granularity,
    derive_table_range_for_granularity,
    period_key_for,
)
from pnl_engine.engine.retention import resolve_manual_return_rate
from pnl_engine.models.costs import CostContext, CostPolicy, ManualReturnRateEntry
from pnl_engine.models.enums import Granularity
from pnl_engine.models.metrics import AggregatedMetrics, DailyMetricRecord
from pnl_engine.models.pnl import PeriodBucket, PeriodRow, PnLGrowth, PnLMetrics, PnLResult
from pnl_engine.models.ranges import DateRange
from pnl_engine.storage.base import AnalyticsSource
from pnl_engine.utils.dates import derive_previous_range, parse_iso_date
from pnl_engine.utils.logging import get_logger
from pnl_engine.utils.numeric import percentage_change

TOTAL_LABEL = "Total"


def _context_for(aggregate: AggregatedMetrics, start_ms: float, end_exclusive_ms: float) -> CostContext:
    return CostContext(
        orders_count=aggregate.orders,
        units_sold=aggregate.units_sold,
        revenue=aggregate.revenue,
        range_start_ms=start_ms,
        range_end_ms=end_exclusive_ms,
    )


class PnLBuilder:
    """
    Builds bucketed P&L tables from an analytics source.

    Attributes:
        source: Analytics source the rows, policies, and overrides are read from
        settings: Shipping dedup and new-customer policies
        allocator: Splits cost policies across buckets
    """

    def __init__(
        self,
        source: AnalyticsSource,
        settings: Optional[Settings] = None,
        allocator: Optional[CostAllocator] = None,
    ):
        self.source = source
        self.settings = settings or get_settings()
        self.allocator = allocator or CostAllocator()
        self.logger = get_logger(__name__)

    def compute_range_metrics(
        self,
        records: list[DailyMetricRecord],
        date_range: DateRange,
        policies: list[CostPolicy],
        rate_entries: list[ManualReturnRateEntry],
    ) -> PnLMetrics:
        """
        P&L metrics for a whole range, with policies evaluated against it directly.

        This is the computation behind the Total row and the KPI bundle.
        """
        aggregate = merge_daily_metrics(records)
        context = _context_for(aggregate, date_range.start_ms, date_range.end_exclusive_ms)
        cost_totals = self.allocator.evaluate_all(policies, context)
        manual_rate = resolve_manual_return_rate(
            rate_entries, date_range.start_ms, date_range.end_ms
        )
        return compute_pnl_metrics(aggregate, cost_totals, manual_rate, self.settings)

    def build_buckets(
        self,
        records: list[DailyMetricRecord],
        table_range: DateRange,
        granularity: Granularity,
    ) -> list[PeriodBucket]:
        """Period buckets for the table range with their records merged in."""
        periods = build_periods(table_range, granularity)
        grouped: dict[str, list[DailyMetricRecord]] = {period.key: [] for period in periods}
        skipped = 0
        for record in records:
            key = period_key_for(record.date, granularity)
            if key is None or key not in grouped:
                skipped += 1
                continue
            grouped[key].append(record)

        if skipped:
            self.logger.warning("records_without_bucket", count=skipped)

        return [
            PeriodBucket(definition=period, aggregate=merge_daily_metrics(grouped[period.key]))
            for period in periods
        ]

    async def load_pnl_table(
        self,
        organization_id: str,
        selected_range: DateRange,
        granularity: Union[Granularity, str] = Granularity.MONTHLY,
    ) -> PnLResult:
        """
        Build the P&L table for ``selected_range``.

        Args:
            organization_id: Organization to report on
            selected_range: Exact range the caller asked for
            granularity: daily, weekly, or monthly buckets

        Returns:
            PnLResult with one row per bucket plus a Total row; an empty
            result (``has_data`` False, ``metrics`` None) when the table
            range has no snapshots

        Raises:
            ValueError: If ``granularity`` is not supported
            StorageError: If any source read fails
        """
        granularity = coerce_granularity(granularity)
        table_range = derive_table_range_for_granularity(selected_range, granularity)
        previous_range = derive_previous_range(selected_range)

        with structlog.contextvars.bound_contextvars(organization_id=organization_id):
            table_rows, previous_rows, policies, rate_entries = await asyncio.gather(
                self.source.fetch_daily_metrics(organization_id, table_range),
                self.source.fetch_daily_metrics(organization_id, previous_range),
                self.source.fetch_active_cost_policies(organization_id),
                self.source.fetch_manual_return_rate_entries(organization_id),
            )

            if not table_rows:
                self.logger.info(
                    "pnl_table_no_data",
                    start_date=table_range.start_date,
                    end_date=table_range.end_date,
                )
                return PnLResult(
                    table_range=table_range,
                    selected_range=selected_range,
                    granularity=granularity,
                )

            active_policies = [policy for policy in policies if policy.is_active]

            buckets = self.build_buckets(table_rows, table_range, granularity)
            table_aggregate = merge_daily_metrics(table_rows)
            table_context = _context_for(
                table_aggregate, table_range.start_ms, table_range.end_exclusive_ms
            )
            bucket_costs = self.allocator.allocate_all(active_policies, table_context, buckets)

            periods: list[PeriodRow] = []
            previous_metrics: Optional[PnLMetrics] = None
            for bucket in buckets:
                definition = bucket.definition
                manual_rate = resolve_manual_return_rate(
                    rate_entries, definition.start_ms, definition.end_ms
                )
                metrics = compute_pnl_metrics(
                    bucket.aggregate, bucket_costs[bucket.key], manual_rate, self.settings
                )
                growth = None
                if previous_metrics is not None:
                    growth = PnLGrowth(
                        revenue=percentage_change(metrics.revenue, previous_metrics.revenue),
                        net_profit=percentage_change(
                            metrics.net_profit, previous_metrics.net_profit
                        ),
                    )
                periods.append(
                    PeriodRow(
                        label=definition.label,
                        date=definition.date,
                        metrics=metrics,
                        growth=growth,
                    )
                )
                previous_metrics = metrics

            totals = self.compute_range_metrics(
                table_rows, table_range, active_policies, rate_entries
            )
            if periods:
                periods.append(
                    PeriodRow(
                        label=TOTAL_LABEL,
                        date=table_range.end_date,
                        metrics=totals,
                        is_total=True,
                    )
                )

            selected_rows = [
                record
                for record in table_rows
                if parse_iso_date(record.date) is None or selected_range.contains(record.date)
            ]
            selected_metrics = self.compute_range_metrics(
                selected_rows, selected_range, active_policies, rate_entries
            )
            previous_selected = self.compute_range_metrics(
                previous_rows, previous_range, active_policies, rate_entries
            )

            self.logger.info(
                "pnl_table_built",
                granularity=granularity.value,
                buckets=len(buckets),
                table_start=table_range.start_date,
                table_end=table_range.end_date,
                policies=len(active_policies),
            )

            return PnLResult(
                metrics=build_kpi_bundle(selected_metrics, previous_selected),
                periods=periods,
                totals=totals,
                table_range=table_range,
                selected_range=selected_range,
                granularity=granularity,
                has_data=True,
            )

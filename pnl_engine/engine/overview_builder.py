"""
Overview Builder - range-level KPI summary with period-over-period changes.

For a requested range the builder reads, concurrently:
- daily snapshots for the range and for the previous range of equal length
- active cost policies and manual return-rate overrides
- ad-insight totals for both ranges
- when the range is exactly one calendar month, snapshots for the previous
  calendar month (so month-over-month growth compares whole months rather
  than a shifted window of the same length)

Both ranges are merged, costed, and retention-adjusted the same way, and
every summary metric is paired with its percentage change.
"""

import asyncio
from typing import Optional

import structlog

from pnl_engine.config import Settings, get_settings
from pnl_engine.engine.cost_allocator import CostAllocator
from pnl_engine.engine.kpis import compute_pnl_metrics, count_new_customers
from pnl_engine.engine.merger import compute_coverage, merge_daily_metrics
from pnl_engine.engine.retention import resolve_manual_return_rate
from pnl_engine.models.costs import CostContext, CostPolicy, ManualReturnRateEntry
from pnl_engine.models.metrics import AdInsightTotals, AggregatedMetrics
from pnl_engine.models.overview import (
    SUMMARY_METRICS,
    ChannelShare,
    CustomerOverview,
    MetricValue,
    OrdersOverview,
    Overview,
    OverviewExtras,
    OverviewSummary,
)
from pnl_engine.models.pnl import PnLMetrics
from pnl_engine.models.ranges import DateRange
from pnl_engine.storage.base import AnalyticsSource
from pnl_engine.utils.dates import (
    derive_previous_range,
    is_full_calendar_month,
    previous_calendar_month,
)
from pnl_engine.utils.logging import get_logger
from pnl_engine.utils.numeric import percent_of, percentage_change, safe_divide

CUSTOMER_METRICS = (
    "total_customers",
    "new_customers",
    "returning_customers",
    "repeat_customers",
    "repeat_customer_rate",
    "new_customer_share",
    "average_orders_per_customer",
    "revenue_per_customer",
)


async def _no_rows() -> list:
    return []


def _summary_values(aggregate: AggregatedMetrics, metrics: PnLMetrics) -> dict[str, float]:
    """Summary metric values for one window, keyed by SUMMARY_METRICS names."""
    revenue = metrics.gross_revenue
    net_revenue = metrics.revenue
    ads = metrics.ad_spend
    aov = safe_divide(revenue, aggregate.orders)

    return {
        "revenue": revenue,
        "gross_sales": metrics.gross_sales,
        "discounts": metrics.discounts,
        "refunds": metrics.refunds,
        "rto_revenue_lost": metrics.rto_revenue_lost,
        "returns": metrics.refunds + metrics.rto_revenue_lost,
        "net_revenue": net_revenue,
        "orders": aggregate.orders,
        "units_sold": aggregate.units_sold,
        "average_order_value": aov,
        "cogs": metrics.cogs,
        "shipping_costs": metrics.shipping_costs,
        "transaction_fees": metrics.transaction_fees,
        "handling_fees": metrics.handling_fees,
        "taxes": metrics.taxes,
        "custom_costs": metrics.custom_costs,
        "total_costs": metrics.total_costs,
        "ad_spend": ads,
        "gross_profit": metrics.gross_profit,
        "gross_profit_margin": percent_of(metrics.gross_profit, revenue),
        "contribution_margin": metrics.contribution_margin,
        "contribution_margin_percentage": percent_of(metrics.contribution_margin, revenue),
        "operating_profit": metrics.operating_profit,
        "operating_margin": percent_of(metrics.operating_profit, revenue),
        "net_profit": metrics.net_profit,
        "net_profit_margin": percent_of(metrics.net_profit, revenue),
        "roas": safe_divide(revenue, ads),
        "poas": safe_divide(metrics.net_profit, ads),
        "mer": percent_of(ads, revenue),
        "cac": metrics.cac,
        "cac_percentage_of_aov": percent_of(metrics.cac, aov),
        "ltv": metrics.ltv,
        "ltv_to_cac": metrics.ltv_to_cac,
        "blended_ctr": aggregate.blended_ctr,
        "customers": aggregate.customers,
        "new_customers": metrics.new_customers,
        "returning_customers": aggregate.returning_customers,
        "repeat_customers": aggregate.repeat_customers,
        "repeat_customer_rate": percent_of(aggregate.repeat_customers, aggregate.customers),
        "return_rate": percent_of(aggregate.returned_orders, aggregate.orders),
        "cancelled_orders": aggregate.cancelled_orders,
        "returned_orders": aggregate.returned_orders,
        "manual_return_rate_percent": metrics.manual_return_rate_percent,
        "cogs_percentage_of_gross": percent_of(metrics.cogs, metrics.gross_sales),
        "shipping_percentage_of_net": percent_of(metrics.shipping_costs, net_revenue),
        "taxes_percentage_of_revenue": percent_of(metrics.taxes, revenue),
        "ad_spend_percentage_of_net": percent_of(ads, net_revenue),
        "discount_rate": percent_of(metrics.discounts, metrics.gross_sales),
    }


def _orders_overview(aggregate: AggregatedMetrics) -> OrdersOverview:
    orders = aggregate.orders
    return OrdersOverview(
        total_orders=orders,
        fulfilled_orders=aggregate.fulfilled_orders,
        cancelled_orders=aggregate.cancelled_orders,
        returned_orders=aggregate.returned_orders,
        fulfillment_rate=percent_of(aggregate.fulfilled_orders, orders),
        cancellation_rate=percent_of(aggregate.cancelled_orders, orders),
        return_rate=percent_of(aggregate.returned_orders, orders),
        prepaid_orders=aggregate.prepaid_orders,
        cod_orders=aggregate.cod_orders,
        other_orders=aggregate.other_orders,
        cod_share=percent_of(
            aggregate.cod_orders,
            aggregate.prepaid_orders + aggregate.cod_orders + aggregate.other_orders,
        ),
    )


def _channel_shares(aggregate: AggregatedMetrics) -> list[ChannelShare]:
    shares = [
        ChannelShare(
            name=channel.name,
            revenue=channel.revenue,
            orders=channel.orders,
            revenue_share=percent_of(channel.revenue, aggregate.revenue),
        )
        for channel in aggregate.channels.values()
    ]
    return sorted(shares, key=lambda share: (-share.revenue, share.name))


def _customer_values(aggregate: AggregatedMetrics, settings: Settings) -> dict[str, float]:
    customers = aggregate.customers
    new_customers = count_new_customers(aggregate, settings.new_customer_source)
    return {
        "total_customers": customers,
        "new_customers": new_customers,
        "returning_customers": aggregate.returning_customers,
        "repeat_customers": aggregate.repeat_customers,
        "repeat_customer_rate": percent_of(aggregate.repeat_customers, customers),
        "new_customer_share": percent_of(new_customers, customers),
        "average_orders_per_customer": safe_divide(aggregate.orders, customers),
        "revenue_per_customer": safe_divide(aggregate.revenue, customers),
    }


class OverviewBuilder:
    """
    Builds range-level overviews from an analytics source.

    Holds no per-request state: every call allocates its own aggregates,
    so one builder can serve concurrent requests.
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

    def _window_metrics(
        self,
        aggregate: AggregatedMetrics,
        date_range: DateRange,
        policies: list[CostPolicy],
        rate_entries: list[ManualReturnRateEntry],
        ad_totals: AdInsightTotals,
    ) -> PnLMetrics:
        """Cost, retention-adjust, and finalize one window's aggregate."""
        context = CostContext(
            orders_count=aggregate.orders,
            units_sold=aggregate.units_sold,
            revenue=aggregate.revenue,
            range_start_ms=date_range.start_ms,
            range_end_ms=date_range.end_exclusive_ms,
        )
        cost_totals = self.allocator.evaluate_all(policies, context)
        manual_rate = resolve_manual_return_rate(
            rate_entries, date_range.start_ms, date_range.end_ms
        )
        ad_spend = None
        if self.settings.prefer_ad_insight_spend and ad_totals.spend > 0:
            ad_spend = ad_totals.spend
        return compute_pnl_metrics(aggregate, cost_totals, manual_rate, self.settings, ad_spend)

    async def load_overview(self, organization_id: str, date_range: DateRange) -> Overview:
        """
        Build the overview for ``date_range``.

        Args:
            organization_id: Organization to report on
            date_range: Requested inclusive range

        Returns:
            Overview; ``has_data`` is False (with zeroed figures) when the
            range has no daily snapshots

        Raises:
            StorageError: If any source read fails
        """
        previous_range = derive_previous_range(date_range)
        calendar_range = (
            previous_calendar_month(date_range) if is_full_calendar_month(date_range) else None
        )

        with structlog.contextvars.bound_contextvars(organization_id=organization_id):
            self.logger.info(
                "overview_requested",
                start_date=date_range.start_date,
                end_date=date_range.end_date,
                calendar_month=calendar_range is not None,
            )

            (
                current_rows,
                previous_rows,
                calendar_rows,
                policies,
                rate_entries,
                current_ads,
                previous_ads,
            ) = await asyncio.gather(
                self.source.fetch_daily_metrics(organization_id, date_range),
                self.source.fetch_daily_metrics(organization_id, previous_range),
                (
                    self.source.fetch_daily_metrics(organization_id, calendar_range)
                    if calendar_range is not None
                    else _no_rows()
                ),
                self.source.fetch_active_cost_policies(organization_id),
                self.source.fetch_manual_return_rate_entries(organization_id),
                self.source.fetch_ad_insight_totals(organization_id, date_range),
                self.source.fetch_ad_insight_totals(organization_id, previous_range),
            )

            coverage = compute_coverage(current_rows, date_range)
            if not current_rows:
                self.logger.info("overview_no_data", start_date=date_range.start_date)
                return Overview(
                    date_range=date_range,
                    previous_range=previous_range,
                    coverage=coverage,
                    metrics={name: MetricValue() for name in SUMMARY_METRICS},
                )
            if not coverage.has_full_coverage:
                self.logger.warning(
                    "partial_coverage_detected",
                    expected_days=coverage.expected_days,
                    available_days=coverage.available_days,
                )

            active_policies = [policy for policy in policies if policy.is_active]

            current = merge_daily_metrics(current_rows)
            previous = merge_daily_metrics(previous_rows)
            current_metrics = self._window_metrics(
                current, date_range, active_policies, rate_entries, current_ads
            )
            previous_metrics = self._window_metrics(
                previous, previous_range, active_policies, rate_entries, previous_ads
            )

            current_values = _summary_values(current, current_metrics)
            previous_values = _summary_values(previous, previous_metrics)
            changes = {
                name: percentage_change(current_values[name], previous_values[name])
                for name in SUMMARY_METRICS
            }

            calendar_growth = 0.0
            if calendar_range is not None:
                calendar_revenue = merge_daily_metrics(calendar_rows).revenue
                calendar_growth = percentage_change(current.revenue, calendar_revenue)

            summary = OverviewSummary(
                **current_values,
                **{f"{name}_change": change for name, change in changes.items()},
                mom_revenue_growth=changes["revenue"],
                calendar_mom_revenue_growth=calendar_growth,
            )
            metrics = {
                name: MetricValue(
                    value=current_values[name],
                    change=changes[name],
                    previous_value=previous_values[name],
                )
                for name in SUMMARY_METRICS
            }

            conversion_rate = percent_of(current.conversions, current.sessions)
            previous_conversion_rate = percent_of(previous.conversions, previous.sessions)
            extras = OverviewExtras(
                blended_session_conversion_rate=conversion_rate,
                blended_session_conversion_rate_change=percentage_change(
                    conversion_rate, previous_conversion_rate
                ),
                unique_visitors=current.visitors,
                unique_visitors_change=percentage_change(current.visitors, previous.visitors),
                sessions=current.sessions,
                blended_ctr=current.blended_ctr,
                ad_ctr=current_ads.ctr,
                ad_cpc=current_ads.cpc,
                ad_cpm=current_ads.cpm,
                ad_roas=current_ads.roas,
            )

            self.logger.info(
                "overview_loaded",
                has_data=True,
                has_full_coverage=coverage.has_full_coverage,
                days=int(current.days),
                policies=len(active_policies),
            )

            return Overview(
                date_range=date_range,
                previous_range=previous_range,
                has_data=True,
                has_full_coverage=coverage.has_full_coverage,
                coverage=coverage,
                summary=summary,
                metrics=metrics,
                extras=extras,
                orders=_orders_overview(current),
                channels=_channel_shares(current),
            )

    async def load_customer_overview(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> CustomerOverview:
        """
        Customer counts and value for ``date_range`` with changes vs the
        previous range of equal length.

        New customers follow the configured ``new_customer_source``.
        """
        previous_range = derive_previous_range(date_range)

        with structlog.contextvars.bound_contextvars(organization_id=organization_id):
            current_rows, previous_rows = await asyncio.gather(
                self.source.fetch_daily_metrics(organization_id, date_range),
                self.source.fetch_daily_metrics(organization_id, previous_range),
            )
            if not current_rows:
                return CustomerOverview(
                    date_range=date_range,
                    changes={name: 0.0 for name in CUSTOMER_METRICS},
                )

            current_values = _customer_values(merge_daily_metrics(current_rows), self.settings)
            previous_values = _customer_values(merge_daily_metrics(previous_rows), self.settings)

            self.logger.info(
                "customer_overview_loaded",
                new_customer_source=self.settings.new_customer_source.value,
            )

            return CustomerOverview(
                date_range=date_range,
                has_data=True,
                **current_values,
                changes={
                    name: percentage_change(current_values[name], previous_values[name])
                    for name in CUSTOMER_METRICS
                },
            )

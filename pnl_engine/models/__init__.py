"""
Pydantic v2 data models for the P&L engine.

Model Organization:
    - enums: Enumeration types (granularity, accrual modes, merge policies)
    - ranges: Validated inclusive UTC date ranges
    - metrics: Daily snapshots, aggregates, ad-insight totals, coverage
    - costs: Cost policies, return-rate overrides, evaluation context
    - pnl: Period definitions, P&L rows, KPI bundle, table result
    - overview: Overview summary, metric values, orders/customer views

Usage:
    >>> from pnl_engine.models import DailyMetricRecord, DateRange
    >>> record = DailyMetricRecord.model_validate(
    ...     {"date": "2024-03-01", "totalRevenue": "1250.50", "totalOrders": 12}
    ... )
    >>> record.revenue
    1250.5
"""

from .enums import (
    AccrualMode,
    CostCalculation,
    CostCategory,
    Granularity,
    NewCustomerSource,
    ShippingDedupMode,
)
from .ranges import DateRange
from .metrics import (
    AdInsightTotals,
    AggregatedMetrics,
    ChannelRevenue,
    CoverageReport,
    CustomerBreakdown,
    DailyMetricRecord,
    PaymentBreakdown,
)
from .costs import CostContext, CostPolicy, CostTotals, ManualReturnRateEntry
from .pnl import (
    KPIBundle,
    PeriodBucket,
    PeriodDefinition,
    PeriodRow,
    PnLGrowth,
    PnLMetrics,
    PnLResult,
)
from .overview import (
    ChannelShare,
    CustomerOverview,
    MetricValue,
    OrdersOverview,
    Overview,
    OverviewExtras,
    OverviewSummary,
)

__all__ = [
    # Enumerations
    "AccrualMode",
    "CostCalculation",
    "CostCategory",
    "Granularity",
    "NewCustomerSource",
    "ShippingDedupMode",
    # Ranges
    "DateRange",
    # Metrics
    "AdInsightTotals",
    "AggregatedMetrics",
    "ChannelRevenue",
    "CoverageReport",
    "CustomerBreakdown",
    "DailyMetricRecord",
    "PaymentBreakdown",
    # Costs
    "CostContext",
    "CostPolicy",
    "CostTotals",
    "ManualReturnRateEntry",
    # P&L
    "KPIBundle",
    "PeriodBucket",
    "PeriodDefinition",
    "PeriodRow",
    "PnLGrowth",
    "PnLMetrics",
    "PnLResult",
    # Overview
    "ChannelShare",
    "CustomerOverview",
    "MetricValue",
    "OrdersOverview",
    "Overview",
    "OverviewExtras",
    "OverviewSummary",
]

"""
Overview models: range-level KPI summary with period-over-period changes.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .metrics import CoverageReport
from .ranges import DateRange

# Summary metrics that are paired with a ``<name>_change`` field
SUMMARY_METRICS = (
    # Revenue
    "revenue",
    "gross_sales",
    "discounts",
    "refunds",
    "rto_revenue_lost",
    "returns",
    "net_revenue",
    "orders",
    "units_sold",
    "average_order_value",
    # Costs
    "cogs",
    "shipping_costs",
    "transaction_fees",
    "handling_fees",
    "taxes",
    "custom_costs",
    "total_costs",
    "ad_spend",
    # Profit
    "gross_profit",
    "gross_profit_margin",
    "contribution_margin",
    "contribution_margin_percentage",
    "operating_profit",
    "operating_margin",
    "net_profit",
    "net_profit_margin",
    # Marketing efficiency
    "roas",
    "poas",
    "mer",
    "cac",
    "cac_percentage_of_aov",
    "ltv",
    "ltv_to_cac",
    "blended_ctr",
    # Customers and orders
    "customers",
    "new_customers",
    "returning_customers",
    "repeat_customers",
    "repeat_customer_rate",
    "return_rate",
    "cancelled_orders",
    "returned_orders",
    "manual_return_rate_percent",
    # Cost structure
    "cogs_percentage_of_gross",
    "shipping_percentage_of_net",
    "taxes_percentage_of_revenue",
    "ad_spend_percentage_of_net",
    "discount_rate",
)


class OverviewSummary(BaseModel):
    """
    Named KPI values for the requested range.

    Every metric in ``SUMMARY_METRICS`` has a sibling ``<name>_change``
    holding its percentage change against the previous range of the same
    length. ``mom_revenue_growth`` repeats ``revenue_change`` for display;
    ``calendar_mom_revenue_growth`` is only non-zero when the range is
    exactly one calendar month and compares against the previous calendar
    month.
    """

    revenue: float = 0.0
    gross_sales: float = 0.0
    discounts: float = 0.0
    refunds: float = 0.0
    rto_revenue_lost: float = 0.0
    returns: float = 0.0
    net_revenue: float = 0.0
    orders: float = 0.0
    units_sold: float = 0.0
    average_order_value: float = 0.0

    cogs: float = 0.0
    shipping_costs: float = 0.0
    transaction_fees: float = 0.0
    handling_fees: float = 0.0
    taxes: float = 0.0
    custom_costs: float = 0.0
    total_costs: float = 0.0
    ad_spend: float = 0.0

    gross_profit: float = 0.0
    gross_profit_margin: float = 0.0
    contribution_margin: float = 0.0
    contribution_margin_percentage: float = 0.0
    operating_profit: float = 0.0
    operating_margin: float = 0.0
    net_profit: float = 0.0
    net_profit_margin: float = 0.0

    roas: float = 0.0
    poas: float = 0.0
    mer: float = 0.0
    cac: float = 0.0
    cac_percentage_of_aov: float = 0.0
    ltv: float = 0.0
    ltv_to_cac: float = 0.0
    blended_ctr: float = 0.0

    customers: float = 0.0
    new_customers: float = 0.0
    returning_customers: float = 0.0
    repeat_customers: float = 0.0
    repeat_customer_rate: float = 0.0
    return_rate: float = 0.0
    cancelled_orders: float = 0.0
    returned_orders: float = 0.0
    manual_return_rate_percent: float = 0.0

    cogs_percentage_of_gross: float = 0.0
    shipping_percentage_of_net: float = 0.0
    taxes_percentage_of_revenue: float = 0.0
    ad_spend_percentage_of_net: float = 0.0
    discount_rate: float = 0.0

    revenue_change: float = 0.0
    gross_sales_change: float = 0.0
    discounts_change: float = 0.0
    refunds_change: float = 0.0
    rto_revenue_lost_change: float = 0.0
    returns_change: float = 0.0
    net_revenue_change: float = 0.0
    orders_change: float = 0.0
    units_sold_change: float = 0.0
    average_order_value_change: float = 0.0

    cogs_change: float = 0.0
    shipping_costs_change: float = 0.0
    transaction_fees_change: float = 0.0
    handling_fees_change: float = 0.0
    taxes_change: float = 0.0
    custom_costs_change: float = 0.0
    total_costs_change: float = 0.0
    ad_spend_change: float = 0.0

    gross_profit_change: float = 0.0
    gross_profit_margin_change: float = 0.0
    contribution_margin_change: float = 0.0
    contribution_margin_percentage_change: float = 0.0
    operating_profit_change: float = 0.0
    operating_margin_change: float = 0.0
    net_profit_change: float = 0.0
    net_profit_margin_change: float = 0.0

    roas_change: float = 0.0
    poas_change: float = 0.0
    mer_change: float = 0.0
    cac_change: float = 0.0
    cac_percentage_of_aov_change: float = 0.0
    ltv_change: float = 0.0
    ltv_to_cac_change: float = 0.0
    blended_ctr_change: float = 0.0

    customers_change: float = 0.0
    new_customers_change: float = 0.0
    returning_customers_change: float = 0.0
    repeat_customers_change: float = 0.0
    repeat_customer_rate_change: float = 0.0
    return_rate_change: float = 0.0
    cancelled_orders_change: float = 0.0
    returned_orders_change: float = 0.0
    manual_return_rate_percent_change: float = 0.0

    cogs_percentage_of_gross_change: float = 0.0
    shipping_percentage_of_net_change: float = 0.0
    taxes_percentage_of_revenue_change: float = 0.0
    ad_spend_percentage_of_net_change: float = 0.0
    discount_rate_change: float = 0.0

    mom_revenue_growth: float = 0.0
    calendar_mom_revenue_growth: float = 0.0


class MetricValue(BaseModel):
    """A single metric with its change against the previous range."""

    value: float = 0.0
    change: float = 0.0
    previous_value: Optional[float] = None


class OverviewExtras(BaseModel):
    """Traffic and ad-platform figures shown beside the summary."""

    blended_session_conversion_rate: float = 0.0
    blended_session_conversion_rate_change: float = 0.0
    unique_visitors: float = 0.0
    unique_visitors_change: float = 0.0
    sessions: float = 0.0
    blended_ctr: float = 0.0
    ad_ctr: float = 0.0
    ad_cpc: float = 0.0
    ad_cpm: float = 0.0
    ad_roas: float = 0.0


class OrdersOverview(BaseModel):
    """Order outcomes and payment mix for the range."""

    total_orders: float = 0.0
    fulfilled_orders: float = 0.0
    cancelled_orders: float = 0.0
    returned_orders: float = 0.0
    fulfillment_rate: float = 0.0
    cancellation_rate: float = 0.0
    return_rate: float = 0.0
    prepaid_orders: float = 0.0
    cod_orders: float = 0.0
    other_orders: float = 0.0
    cod_share: float = 0.0


class ChannelShare(BaseModel):
    """Revenue contribution of one sales channel."""

    name: str
    revenue: float = 0.0
    orders: float = 0.0
    revenue_share: float = Field(default=0.0, description="Percent of range revenue")


class Overview(BaseModel):
    """
    Range-level overview returned to presentation layers.

    ``has_data`` is False when no daily record exists in the range; in that
    case every figure is zero and ``has_full_coverage`` is False.
    """

    date_range: DateRange
    previous_range: Optional[DateRange] = None
    has_data: bool = False
    has_full_coverage: bool = False
    coverage: Optional[CoverageReport] = None
    summary: OverviewSummary = Field(default_factory=OverviewSummary)
    metrics: dict[str, MetricValue] = Field(default_factory=dict)
    extras: OverviewExtras = Field(default_factory=OverviewExtras)
    orders: OrdersOverview = Field(default_factory=OrdersOverview)
    channels: list[ChannelShare] = Field(default_factory=list)


class CustomerOverview(BaseModel):
    """Customer counts and value for the range, with changes vs the previous range."""

    date_range: DateRange
    has_data: bool = False
    total_customers: float = 0.0
    new_customers: float = 0.0
    returning_customers: float = 0.0
    repeat_customers: float = 0.0
    repeat_customer_rate: float = 0.0
    new_customer_share: float = 0.0
    average_orders_per_customer: float = 0.0
    revenue_per_customer: float = 0.0
    changes: dict[str, float] = Field(default_factory=dict)

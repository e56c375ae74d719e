"""
Daily metric snapshot and aggregate models.

``DailyMetricRecord`` is the read-only shape of one organization-day as
written by the ingestion pipeline. Source rows are loosely typed (numeric
strings, nulls, legacy camelCase names), so every numeric field is coerced
through ``to_number`` and every legacy name is accepted as an alias.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pnl_engine.utils.numeric import safe_divide, to_number


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class CustomerBreakdown(BaseModel):
    """New/returning/repeat customer counts for one day."""

    model_config = ConfigDict(frozen=True)

    new_customers: float = Field(default=0.0, validation_alias=_alias("new_customers", "newCustomers"))
    returning_customers: float = Field(
        default=0.0, validation_alias=_alias("returning_customers", "returningCustomers")
    )
    repeat_customers: float = Field(
        default=0.0, validation_alias=_alias("repeat_customers", "repeatCustomers")
    )

    @field_validator("*", mode="before")
    @classmethod
    def coerce_numeric(cls, v) -> float:
        return to_number(v)


class PaymentBreakdown(BaseModel):
    """Order counts by payment method for one day."""

    model_config = ConfigDict(frozen=True)

    prepaid_orders: float = Field(default=0.0, validation_alias=_alias("prepaid_orders", "prepaidOrders"))
    cod_orders: float = Field(default=0.0, validation_alias=_alias("cod_orders", "codOrders"))
    other_orders: float = Field(default=0.0, validation_alias=_alias("other_orders", "otherOrders"))

    @field_validator("*", mode="before")
    @classmethod
    def coerce_numeric(cls, v) -> float:
        return to_number(v)


class ChannelRevenue(BaseModel):
    """Revenue and orders attributed to one sales channel."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Channel name (e.g. 'Online Store', 'POS')")
    revenue: float = Field(default=0.0)
    orders: float = Field(default=0.0)

    @field_validator("name", mode="before")
    @classmethod
    def normalize_name(cls, v) -> str:
        text = str(v).strip() if v is not None else ""
        return text or "Unknown"

    @field_validator("revenue", "orders", mode="before")
    @classmethod
    def coerce_numeric(cls, v) -> float:
        return to_number(v)


NUMERIC_RECORD_FIELDS = (
    "revenue",
    "discounts",
    "refunds",
    "orders",
    "units_sold",
    "cogs",
    "shipping_cost",
    "transaction_fees",
    "handling_fees",
    "taxes",
    "marketing_cost",
    "blended_ctr",
    "paid_customers",
    "total_customers",
    "cancelled_orders",
    "returned_orders",
    "sessions",
    "visitors",
    "conversions",
)


class DailyMetricRecord(BaseModel):
    """
    One pre-aggregated metrics snapshot for a single (organization, day).

    Immutable once written by ingestion. Optional fields carry explicit
    fallback rules instead of being inspected at runtime:

    - ``gross_sales`` falls back to ``revenue + discounts`` when absent
    - ``fulfilled_orders`` is None when the source did not report it
    - missing breakdown objects count as zero
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    date: str = Field(description="Calendar day (YYYY-MM-DD); may be malformed in legacy rows")
    revenue: float = Field(default=0.0, validation_alias=_alias("revenue", "totalRevenue"))
    discounts: float = Field(default=0.0, validation_alias=_alias("discounts", "totalDiscounts"))
    gross_sales: Optional[float] = Field(
        default=None, validation_alias=_alias("gross_sales", "grossSales")
    )
    refunds: float = Field(default=0.0, validation_alias=_alias("refunds", "totalRefunds"))
    orders: float = Field(default=0.0, validation_alias=_alias("orders", "totalOrders"))
    units_sold: float = Field(default=0.0, validation_alias=_alias("units_sold", "unitsSold"))
    cogs: float = Field(default=0.0, validation_alias=_alias("cogs", "totalCogs"))
    shipping_cost: float = Field(
        default=0.0, validation_alias=_alias("shipping_cost", "totalShippingCost")
    )
    transaction_fees: float = Field(
        default=0.0, validation_alias=_alias("transaction_fees", "totalTransactionFees")
    )
    handling_fees: float = Field(
        default=0.0, validation_alias=_alias("handling_fees", "totalHandlingFee")
    )
    taxes: float = Field(default=0.0, validation_alias=_alias("taxes", "totalTaxes"))
    marketing_cost: float = Field(
        default=0.0, validation_alias=_alias("marketing_cost", "blendedMarketingCost")
    )
    blended_ctr: float = Field(default=0.0, validation_alias=_alias("blended_ctr", "blendedCtr"))
    paid_customers: float = Field(
        default=0.0, validation_alias=_alias("paid_customers", "paidCustomers")
    )
    total_customers: float = Field(
        default=0.0, validation_alias=_alias("total_customers", "totalCustomers")
    )
    cancelled_orders: float = Field(
        default=0.0, validation_alias=_alias("cancelled_orders", "cancelledOrders")
    )
    returned_orders: float = Field(
        default=0.0, validation_alias=_alias("returned_orders", "returnedOrders")
    )
    fulfilled_orders: Optional[float] = Field(
        default=None, validation_alias=_alias("fulfilled_orders", "fulfilledOrders")
    )
    sessions: float = Field(default=0.0)
    visitors: float = Field(default=0.0)
    conversions: float = Field(default=0.0)
    customer_breakdown: Optional[CustomerBreakdown] = Field(
        default=None, validation_alias=_alias("customer_breakdown", "customerBreakdown")
    )
    payment_breakdown: Optional[PaymentBreakdown] = Field(
        default=None, validation_alias=_alias("payment_breakdown", "paymentBreakdown")
    )
    channel_revenue: list[ChannelRevenue] = Field(
        default_factory=list, validation_alias=_alias("channel_revenue", "channelRevenue")
    )

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator(*NUMERIC_RECORD_FIELDS, mode="before")
    @classmethod
    def coerce_numeric(cls, v) -> float:
        return to_number(v)

    @field_validator("gross_sales", "fulfilled_orders", mode="before")
    @classmethod
    def coerce_optional_numeric(cls, v) -> Optional[float]:
        return None if v is None else to_number(v)

    @field_validator("channel_revenue", mode="before")
    @classmethod
    def drop_null_channels(cls, v) -> list:
        if not v:
            return []
        return [item for item in v if item]

    @property
    def effective_gross_sales(self) -> float:
        """Reported gross sales, or revenue plus discounts for rows that predate the field."""
        if self.gross_sales is None:
            return self.revenue + self.discounts
        return self.gross_sales


# Fields of AggregatedMetrics that are plain sums over records
ADDITIVE_FIELDS = (
    "revenue",
    "gross_sales",
    "discounts",
    "refunds",
    "orders",
    "units_sold",
    "cogs",
    "shipping_costs",
    "transaction_fees",
    "handling_fees",
    "taxes",
    "marketing_cost",
    "ctr_sum",
    "ctr_count",
    "paid_customers",
    "total_customers",
    "new_customers",
    "returning_customers",
    "repeat_customers",
    "prepaid_orders",
    "cod_orders",
    "other_orders",
    "cancelled_orders",
    "returned_orders",
    "reported_fulfilled_orders",
    "sessions",
    "visitors",
    "conversions",
    "days",
)


class AggregatedMetrics(BaseModel):
    """
    Additive sum of DailyMetricRecord fields over a date range.

    Built fresh per request by the merger and never persisted. The two
    return-loss fields are filled in after merging, once the manual return
    rate for the window is known.
    """

    revenue: float = 0.0
    gross_sales: float = 0.0
    discounts: float = 0.0
    refunds: float = 0.0
    orders: float = 0.0
    units_sold: float = 0.0
    cogs: float = 0.0
    shipping_costs: float = 0.0
    transaction_fees: float = 0.0
    handling_fees: float = 0.0
    taxes: float = 0.0
    marketing_cost: float = 0.0
    ctr_sum: float = 0.0
    ctr_count: float = 0.0
    paid_customers: float = 0.0
    total_customers: float = 0.0
    new_customers: float = 0.0
    returning_customers: float = 0.0
    repeat_customers: float = 0.0
    prepaid_orders: float = 0.0
    cod_orders: float = 0.0
    other_orders: float = 0.0
    cancelled_orders: float = 0.0
    returned_orders: float = 0.0
    reported_fulfilled_orders: float = 0.0
    fulfilled_reported: bool = False
    sessions: float = 0.0
    visitors: float = 0.0
    conversions: float = 0.0
    days: float = 0.0
    channels: dict[str, ChannelRevenue] = Field(default_factory=dict)

    manual_return_rate_percent: float = 0.0
    rto_revenue_lost: float = 0.0

    @property
    def blended_ctr(self) -> float:
        """Mean of the non-zero daily click-through-rate samples."""
        return safe_divide(self.ctr_sum, self.ctr_count)

    @property
    def fulfilled_orders(self) -> float:
        """Reported fulfilled orders, else orders that were neither cancelled nor returned."""
        if self.fulfilled_reported:
            return self.reported_fulfilled_orders
        return max(self.orders - self.cancelled_orders - self.returned_orders, 0.0)

    @property
    def customers(self) -> float:
        """Total customers, falling back to paying customers for rows without totals."""
        return self.total_customers or self.paid_customers

    @property
    def is_empty(self) -> bool:
        return self.days == 0

    def combine(self, other: "AggregatedMetrics") -> "AggregatedMetrics":
        """Field-wise sum of two aggregates (channel maps merged by name)."""
        values = {name: getattr(self, name) + getattr(other, name) for name in ADDITIVE_FIELDS}
        channels = dict(self.channels)
        for name, channel in other.channels.items():
            existing = channels.get(name)
            if existing is None:
                channels[name] = channel
            else:
                channels[name] = ChannelRevenue(
                    name=name,
                    revenue=existing.revenue + channel.revenue,
                    orders=existing.orders + channel.orders,
                )
        return AggregatedMetrics(
            **values,
            fulfilled_reported=self.fulfilled_reported or other.fulfilled_reported,
            channels=channels,
        )


class AdInsightTotals(BaseModel):
    """
    Ad-platform insight totals for a window.

    Produced by the analytics source from account-level rows when any
    exist, otherwise from all rows in the window.
    """

    spend: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    unique_clicks: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0
    reach: float = 0.0

    @field_validator("*", mode="before")
    @classmethod
    def coerce_numeric(cls, v) -> float:
        return to_number(v)

    @property
    def ctr(self) -> float:
        return safe_divide(self.clicks, self.impressions) * 100

    @property
    def cpc(self) -> float:
        return safe_divide(self.spend, self.clicks)

    @property
    def cpm(self) -> float:
        return safe_divide(self.spend, self.impressions) * 1000

    @property
    def cost_per_conversion(self) -> float:
        return safe_divide(self.spend, self.conversions)

    @property
    def roas(self) -> float:
        return safe_divide(self.conversion_value, self.spend)

    @property
    def frequency(self) -> float:
        return safe_divide(self.impressions, self.reach)


class CoverageReport(BaseModel):
    """
    Which days of a requested range had a source record.

    Gaps indicate incomplete backfill and are surfaced rather than treated
    as zero-activity days.
    """

    requested_start: str = Field(description="First requested day")
    requested_end: str = Field(description="Last requested day")
    first_available: Optional[str] = Field(default=None, description="Earliest day with data")
    last_available: Optional[str] = Field(default=None, description="Latest day with data")
    expected_days: int = Field(default=0, ge=0, description="Days in the requested range")
    available_days: int = Field(default=0, ge=0, description="Distinct days with data")
    missing_dates: list[str] = Field(default_factory=list, description="Requested days without data")
    has_full_coverage: bool = Field(default=False, description="Every requested day has data")

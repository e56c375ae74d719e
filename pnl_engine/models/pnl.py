"""
P&L table models.

A P&L table is a list of period rows (daily, weekly, or monthly buckets of
the calendar-aligned table range) followed by a synthetic Total row, plus a
KPI bundle for the exact range the user selected.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import Granularity
from .metrics import AggregatedMetrics
from .ranges import DateRange, ms_to_date


class PeriodDefinition(BaseModel):
    """
    One daily/weekly/monthly slice of a table range.

    Attributes:
        key: Stable bucket key ("2024-03-04", "2024-03-04_2024-03-10", "2024-03")
        label: Display label
        date: Anchor day of the bucket (first day)
        start_ms: 00:00:00.000 UTC of the first day
        end_ms: 23:59:59.999 UTC of the last day
    """

    key: str
    label: str
    date: str
    start_ms: int
    end_ms: int
    granularity: Granularity

    @property
    def end_exclusive_ms(self) -> int:
        return self.end_ms + 1

    @property
    def end_date(self) -> str:
        return ms_to_date(self.end_ms).isoformat()


class PeriodBucket(BaseModel):
    """
    A period definition together with the activity merged into it.

    Used only while a table is being built: the aggregate supplies the
    order/unit/revenue weights for cost allocation and the inputs for the
    bucket's P&L row.
    """

    definition: PeriodDefinition
    aggregate: AggregatedMetrics = Field(default_factory=AggregatedMetrics)

    @property
    def key(self) -> str:
        return self.definition.key

    @property
    def start_ms(self) -> int:
        return self.definition.start_ms

    @property
    def end_exclusive_ms(self) -> int:
        return self.definition.end_exclusive_ms


class PnLMetrics(BaseModel):
    """
    Final P&L figures for one window (bucket, selected range, or table range).

    ``revenue`` is net revenue after refunds and RTO losses; ``gross_revenue``
    is the top-line revenue reported by the store. COGS, handling fees, and
    taxes are already scaled by ``retention_factor``.

    Invariant: ``net_profit_margin == net_profit / revenue * 100`` when
    ``revenue > 0``, else 0.
    """

    gross_sales: float = 0.0
    discounts: float = 0.0
    gross_revenue: float = 0.0
    refunds: float = 0.0
    rto_revenue_lost: float = 0.0
    revenue: float = 0.0
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
    operating_profit: float = 0.0
    net_profit: float = 0.0
    net_profit_margin: float = 0.0
    roas: float = 0.0
    poas: float = 0.0
    cac: float = 0.0
    ltv: float = 0.0
    ltv_to_cac: float = 0.0
    orders: float = 0.0
    units_sold: float = 0.0
    new_customers: float = 0.0
    manual_return_rate_percent: float = 0.0
    retention_factor: float = 1.0


class PnLGrowth(BaseModel):
    """Bucket-over-bucket growth against the immediately preceding bucket."""

    revenue: float = 0.0
    net_profit: float = 0.0


class PeriodRow(BaseModel):
    """One displayed row of the P&L table."""

    label: str
    date: str
    metrics: PnLMetrics
    growth: Optional[PnLGrowth] = None
    is_total: bool = False


KPI_FIELDS = (
    "gross_sales",
    "discounts_returns",
    "gross_revenue",
    "revenue",
    "cogs",
    "shipping_costs",
    "transaction_fees",
    "handling_fees",
    "taxes",
    "custom_costs",
    "operating_expenses",
    "ad_spend",
    "gross_profit",
    "ebitda",
    "net_profit",
    "net_profit_margin",
    "marketing_roas",
    "marketing_roi",
    "poas",
    "cac",
    "ltv_to_cac",
)


class KPIBundle(BaseModel):
    """
    Headline KPIs for the selected range, with percentage changes against
    the previous range of identical length.
    """

    gross_sales: float = 0.0
    discounts_returns: float = 0.0
    gross_revenue: float = 0.0
    revenue: float = 0.0
    cogs: float = 0.0
    shipping_costs: float = 0.0
    transaction_fees: float = 0.0
    handling_fees: float = 0.0
    taxes: float = 0.0
    custom_costs: float = 0.0
    operating_expenses: float = 0.0
    ad_spend: float = 0.0
    gross_profit: float = 0.0
    ebitda: float = 0.0
    net_profit: float = 0.0
    net_profit_margin: float = 0.0
    marketing_roas: float = 0.0
    marketing_roi: float = 0.0
    poas: float = 0.0
    cac: float = 0.0
    ltv_to_cac: float = 0.0
    changes: dict[str, float] = Field(
        default_factory=dict,
        description="Percentage change per KPI vs the previous comparable range",
    )


class PnLResult(BaseModel):
    """
    Bucketed P&L table for a request.

    Attributes:
        metrics: KPI bundle for the selected range (None when there is no data)
        periods: Bucket rows in chronological order, then the Total row
        totals: Metrics for the whole table range (equal to the Total row)
        table_range: Calendar-aligned range the buckets cover
        selected_range: Exact range the caller asked for
        granularity: Bucket size
        has_data: Whether any daily record existed in the table range
    """

    metrics: Optional[KPIBundle] = None
    periods: list[PeriodRow] = Field(default_factory=list)
    totals: PnLMetrics = Field(default_factory=PnLMetrics)
    table_range: DateRange
    selected_range: DateRange
    granularity: Granularity
    has_data: bool = False

    def to_rows(self) -> list[dict[str, Any]]:
        """
        Flatten the table for CSV or spreadsheet export.

        Returns:
            One dict per period row (Total last) with label, date, and every
            PnLMetrics field, plus revenue/net-profit growth columns.
        """
        rows = []
        for period in self.periods:
            row: dict[str, Any] = {"label": period.label, "date": period.date}
            row.update(period.metrics.model_dump())
            row["revenue_growth"] = period.growth.revenue if period.growth else None
            row["net_profit_growth"] = period.growth.net_profit if period.growth else None
            row["is_total"] = period.is_total
            rows.append(row)
        return rows

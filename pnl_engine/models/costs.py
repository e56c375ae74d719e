"""
Cost policy and return-rate override models.

Both are merchant-configured records that the engine only reads. Time
fields are epoch milliseconds; ISO date strings are accepted and
converted to 00:00 UTC of that day, and ISO datetimes to their instant.
"""

from datetime import date, datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pnl_engine.models.enums import AccrualMode, CostCalculation, CostCategory
from pnl_engine.models.ranges import date_to_ms, parse_iso_date
from pnl_engine.utils.numeric import to_number

# Frequencies that describe per-activity charges rather than a duration
PER_ORDER_FREQUENCIES = frozenset({"per_order"})
PER_UNIT_FREQUENCIES = frozenset({"per_item", "per_unit"})


def _coerce_ms(v) -> Optional[float]:
    """
    Epoch milliseconds from a number, numeric string, ISO date, or ISO datetime.

    Only None and blank strings mean "no bound"; 0 is the epoch. Datetimes
    without an offset are read as UTC. Unparsable strings are rejected.
    """
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    if isinstance(v, datetime):
        moment = v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)
        return moment.timestamp() * 1000
    if isinstance(v, date):
        return float(date_to_ms(v))
    if not isinstance(v, str):
        return to_number(v)

    text = v.strip()
    parsed = parse_iso_date(text)
    if parsed is not None:
        return float(date_to_ms(parsed))
    try:
        float(text)
    except ValueError:
        pass
    else:
        return to_number(text)

    try:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid timestamp: {v!r}") from e
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp() * 1000


def classify_accrual_mode(
    frequency: Optional[str],
    calculation: Optional[CostCalculation],
    has_explicit_window: bool,
) -> AccrualMode:
    """
    Accrual mode implied by a policy's frequency and calculation.

    Per-order and per-item frequencies win over the calculation; a
    percentage calculation means percentage-of-revenue; a per-unit
    calculation means per-unit; everything else is fixed, or time-bound
    when both ends of the effective window are set.
    """
    freq = (frequency or "").strip().lower()
    if freq in PER_ORDER_FREQUENCIES:
        return AccrualMode.PER_ORDER
    if freq in PER_UNIT_FREQUENCIES:
        return AccrualMode.PER_UNIT
    if calculation == CostCalculation.PERCENTAGE:
        return AccrualMode.PERCENTAGE_REVENUE
    if calculation == CostCalculation.PER_UNIT:
        return AccrualMode.PER_UNIT
    return AccrualMode.TIME_BOUND if has_explicit_window else AccrualMode.FIXED


class CostPolicy(BaseModel):
    """
    A merchant-defined cost line.

    Attributes:
        policy_id: Stable identifier of the policy
        name: Display name
        category: P&L line the amount is booked against
        calculation: Configured calculation method
        value: Monetary value (or percentage for percentage calculations)
        frequency: Accrual frequency ("monthly", "per_order", ...); used for
            proration only when the policy has no explicit end
        is_active: Whether the merchant currently has the policy enabled
        effective_from: Start of validity in epoch ms (open when None)
        effective_to: End of validity in epoch ms (open when None)
        created_at: Creation time in epoch ms
        updated_at: Last edit time in epoch ms
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    policy_id: str = Field(default="", validation_alias=AliasChoices("policy_id", "id", "_id"))
    name: str = Field(default="")
    category: CostCategory = Field(
        default=CostCategory.OPERATIONAL, validation_alias=AliasChoices("category", "type")
    )
    calculation: CostCalculation = Field(default=CostCalculation.FIXED)
    value: float = Field(default=0.0)
    frequency: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    effective_from: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("effective_from", "effectiveFrom")
    )
    effective_to: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("effective_to", "effectiveTo")
    )
    created_at: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v) -> CostCategory:
        """Unknown categories are booked as custom costs."""
        if isinstance(v, CostCategory):
            return v
        text = str(v or "").strip().lower()
        try:
            return CostCategory(text)
        except ValueError:
            return CostCategory.CUSTOM

    @field_validator("calculation", mode="before")
    @classmethod
    def normalize_calculation(cls, v) -> CostCalculation:
        if isinstance(v, CostCalculation):
            return v
        text = str(v or "").strip().lower()
        try:
            return CostCalculation(text)
        except ValueError:
            return CostCalculation.FIXED

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency(cls, v) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip().lower().replace("-", "_")
        return text or None

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v) -> float:
        return to_number(v)

    @field_validator("effective_from", "effective_to", "created_at", "updated_at", mode="before")
    @classmethod
    def coerce_timestamp(cls, v) -> Optional[float]:
        return _coerce_ms(v)

    @property
    def has_explicit_window(self) -> bool:
        return self.effective_from is not None and self.effective_to is not None

    @property
    def accrual_mode(self) -> AccrualMode:
        return classify_accrual_mode(self.frequency, self.calculation, self.has_explicit_window)


class ManualReturnRateEntry(BaseModel):
    """
    Merchant override of the return-to-origin rate for a time window.

    When several entries overlap a window, the most recently updated one
    wins. The rate is a percentage clamped to [0, 100].
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    entry_id: str = Field(default="", validation_alias=AliasChoices("entry_id", "id", "_id"))
    rate_percent: float = Field(
        default=0.0,
        validation_alias=AliasChoices("rate_percent", "ratePercent", "rate", "value"),
    )
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    effective_from: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("effective_from", "effectiveFrom")
    )
    effective_to: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("effective_to", "effectiveTo")
    )
    created_at: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @field_validator("rate_percent", mode="before")
    @classmethod
    def clamp_rate(cls, v) -> float:
        return max(0.0, min(100.0, to_number(v)))

    @field_validator("effective_from", "effective_to", "created_at", "updated_at", mode="before")
    @classmethod
    def coerce_timestamp(cls, v) -> Optional[float]:
        return _coerce_ms(v)

    @property
    def window_start_ms(self) -> float:
        """Start of the override, falling back to its creation time."""
        if self.effective_from is not None:
            return self.effective_from
        if self.created_at is not None:
            return self.created_at
        return 0.0

    @property
    def window_end_ms(self) -> float:
        return self.effective_to if self.effective_to is not None else float("inf")

    @property
    def recency_ms(self) -> float:
        """Sort key for "most recently updated wins"."""
        for candidate in (self.updated_at, self.effective_from, self.created_at):
            if candidate is not None:
                return candidate
        return 0.0


class CostContext(BaseModel):
    """Activity and time window a cost policy is evaluated against."""

    orders_count: float = Field(default=0.0, description="Orders in the window")
    units_sold: float = Field(default=0.0, description="Units sold in the window")
    revenue: float = Field(default=0.0, description="Revenue in the window")
    range_start_ms: float = Field(description="Window start, epoch ms inclusive")
    range_end_ms: float = Field(description="Window end, epoch ms exclusive")


class CostTotals(BaseModel):
    """Policy-driven cost amounts for one window, grouped by P&L line."""

    shipping: float = 0.0
    transaction_fees: float = 0.0
    custom: float = 0.0

    def add(self, category: CostCategory, amount: float) -> None:
        if category == CostCategory.SHIPPING:
            self.shipping += amount
        elif category == CostCategory.PAYMENT:
            self.transaction_fees += amount
        else:
            self.custom += amount

    @property
    def total(self) -> float:
        return self.shipping + self.transaction_fees + self.custom


__all__ = [
    "CostPolicy",
    "ManualReturnRateEntry",
    "CostContext",
    "CostTotals",
    "classify_accrual_mode",
]

"""
Enumeration types for the P&L engine.

All enums inherit from str so that they serialize to plain strings and can
be populated directly from collaborator records and environment variables.
"""

from enum import Enum


class Granularity(str, Enum):
    """Bucket size of a P&L table."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AccrualMode(str, Enum):
    """
    How a cost policy's value turns into an amount for a window.

    Derived from a policy's frequency and calculation rather than stored.
    """

    FIXED = "fixed"
    PER_ORDER = "per_order"
    PER_UNIT = "per_unit"
    PERCENTAGE_REVENUE = "percentage_revenue"
    TIME_BOUND = "time_bound"


class CostCategory(str, Enum):
    """P&L line a cost policy contributes to."""

    SHIPPING = "shipping"
    PAYMENT = "payment"
    OPERATIONAL = "operational"
    CUSTOM = "custom"


class CostCalculation(str, Enum):
    """Calculation method configured on a cost policy."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    PER_UNIT = "per_unit"
    TIERED = "tiered"
    WEIGHT_BASED = "weight_based"
    FORMULA = "formula"


class ShippingDedupMode(str, Enum):
    """
    Merge policy between shipping-category cost policies and the shipping
    cost already recorded in daily snapshots.
    """

    # Snapshot and policy amounts are both charged
    ADDITIVE = "additive"
    # A positive policy amount replaces the snapshot amount
    REPLACE = "replace"
    # Amounts within tolerance of each other are the same charge
    TOLERANCE = "tolerance"


class NewCustomerSource(str, Enum):
    """Signal used to count new customers in a window."""

    # customer_breakdown.new_customers from the daily snapshot
    BREAKDOWN = "breakdown"
    # paid customers minus returning customers
    DERIVED = "derived"

"""
Property-based tests using Hypothesis for the P&L engine.

These tests verify the mathematical invariants the engine relies on:
additivity of the merge, conservation of cost allocation, bounds of the
retention factor, and finiteness of every guarded ratio.
"""

import math
from datetime import date, timedelta

import hypothesis.strategies as st
from hypothesis import HealthCheck, assume, given, settings

from pnl_engine.engine.cost_allocator import CostAllocator
from pnl_engine.engine.kpis import build_kpi_bundle, compute_pnl_metrics
from pnl_engine.engine.merger import merge_daily_metrics
from pnl_engine.engine.periods import build_periods, period_key_for
from pnl_engine.engine.retention import retention_factor
from pnl_engine.models.costs import CostContext, CostTotals
from pnl_engine.models.enums import Granularity
from pnl_engine.models.metrics import ADDITIVE_FIELDS
from pnl_engine.models.pnl import PeriodBucket
from pnl_engine.models.ranges import DateRange
from pnl_engine.utils.numeric import percentage_change, safe_divide
from tests.conftest import make_cost_policy, make_daily_record, make_settings

money = st.floats(min_value=0.0, max_value=1e7, allow_nan=False, allow_infinity=False)
signed_money = st.floats(min_value=-1e7, max_value=1e7, allow_nan=False, allow_infinity=False)
counts = st.integers(min_value=0, max_value=10_000)
any_float = st.floats(allow_nan=True, allow_infinity=True)


@st.composite
def daily_record_lists(draw, max_days: int = 40):
    """Consecutive daily records starting at a drawn date."""
    start = draw(st.dates(min_value=date(2022, 1, 1), max_value=date(2025, 12, 1)))
    days = draw(st.integers(min_value=1, max_value=max_days))
    records = []
    for offset in range(days):
        records.append(
            make_daily_record(
                (start + timedelta(days=offset)).isoformat(),
                revenue=draw(money),
                discounts=draw(money),
                refunds=draw(money),
                orders=draw(counts),
                units_sold=draw(counts),
                cogs=draw(money),
                shipping_cost=draw(money),
                blended_ctr=draw(st.floats(min_value=0.0, max_value=100.0)),
            )
        )
    return records


def _buckets(records, date_range: DateRange, granularity: Granularity) -> list[PeriodBucket]:
    grouped = {}
    for record in records:
        grouped.setdefault(period_key_for(record.date, granularity), []).append(record)
    return [
        PeriodBucket(definition=period, aggregate=merge_daily_metrics(grouped.get(period.key, [])))
        for period in build_periods(date_range, granularity)
    ]


# =============================================================================
# Merge additivity
# =============================================================================


@given(records=daily_record_lists(), split=st.integers(min_value=0, max_value=40))
@settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
def test_prop_merge_is_additive_over_partitions(records, split):
    """
    Invariant 1: merging a range equals combining the merges of any
    contiguous partition of it, field by field.
    """
    split = min(split, len(records))
    whole = merge_daily_metrics(records)
    combined = merge_daily_metrics(records[:split]).combine(merge_daily_metrics(records[split:]))

    for name in ADDITIVE_FIELDS:
        assert math.isclose(getattr(whole, name), getattr(combined, name), rel_tol=1e-9, abs_tol=1e-6), name


# =============================================================================
# Cost allocation conservation
# =============================================================================


@given(
    records=daily_record_lists(max_days=70),
    value=st.floats(min_value=0.01, max_value=1e5, allow_nan=False, allow_infinity=False),
    frequency=st.sampled_from([None, "per_order", "per_item", "weekly", "monthly", "yearly"]),
    calculation=st.sampled_from(["fixed", "percentage"]),
    granularity=st.sampled_from(list(Granularity)),
)
@settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
def test_prop_allocation_conserves_total(records, value, frequency, calculation, granularity):
    """
    Invariant 2: bucket allocations sum to the whole-range evaluation.
    """
    date_range = DateRange(start_date=records[0].date, end_date=records[-1].date)
    buckets = _buckets(records, date_range, granularity)
    aggregate = merge_daily_metrics(records)
    context = CostContext(
        orders_count=aggregate.orders,
        units_sold=aggregate.units_sold,
        revenue=aggregate.revenue,
        range_start_ms=date_range.start_ms,
        range_end_ms=date_range.end_exclusive_ms,
    )
    policy = make_cost_policy(value=value, frequency=frequency, calculation=calculation)
    allocator = CostAllocator()

    total = allocator.evaluator.evaluate(policy, context)
    allocations = allocator.allocate(policy, context, buckets)

    assert math.isclose(sum(allocations.values()), total, rel_tol=1e-9, abs_tol=1e-6)


@given(
    records=daily_record_lists(max_days=70),
    start_offset=st.integers(min_value=-20, max_value=60),
    length=st.integers(min_value=1, max_value=90),
)
@settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
def test_prop_time_bound_allocation_conserves_total(records, start_offset, length):
    """
    Invariant 2b: time-bound policies partially overlapping the range still
    allocate exactly their in-range amount.
    """
    date_range = DateRange(start_date=records[0].date, end_date=records[-1].date)
    policy_start = date_range.start + timedelta(days=start_offset)
    policy = make_cost_policy(
        value=1000,
        effective_from=policy_start.isoformat(),
        effective_to=(policy_start + timedelta(days=length)).isoformat(),
    )
    buckets = _buckets(records, date_range, Granularity.WEEKLY)
    context = CostContext(range_start_ms=date_range.start_ms, range_end_ms=date_range.end_exclusive_ms)
    allocator = CostAllocator()

    total = allocator.evaluator.evaluate(policy, context)
    allocations = allocator.allocate(policy, context, buckets)

    assert total <= 1000 + 1e-9
    assert math.isclose(sum(allocations.values()), total, rel_tol=1e-9, abs_tol=1e-6)


# =============================================================================
# Retention bounds
# =============================================================================


@given(
    revenue=money,
    refunds=money,
    rto=money,
    rate=st.floats(min_value=0.0, max_value=100.0),
)
@settings(max_examples=100)
def test_prop_retention_factor_bounds(revenue, refunds, rto, rate):
    """
    Invariant 3: retention factor is always in [0, 1].
    """
    factor = retention_factor(revenue, refunds, rto, rate)
    assert 0.0 <= factor <= 1.0


@given(revenue=any_float, refunds=any_float, rto=any_float, rate=any_float)
@settings(max_examples=100)
def test_prop_retention_factor_bounds_on_garbage(revenue, refunds, rto, rate):
    """
    Invariant 3b: degenerate inputs still produce a factor in [0, 1].
    """
    factor = retention_factor(revenue, refunds, rto, rate)
    assert 0.0 <= factor <= 1.0


# =============================================================================
# Zero safety
# =============================================================================


@given(numerator=any_float, denominator=any_float)
@settings(max_examples=100)
def test_prop_safe_divide_is_finite(numerator, denominator):
    """
    Invariant 4: guarded division never returns NaN or infinity.
    """
    assert math.isfinite(safe_divide(numerator, denominator))


@given(current=any_float, previous=any_float)
@settings(max_examples=100)
def test_prop_percentage_change_is_finite(current, previous):
    """
    Invariant 4b: percentage change is finite for every input.
    """
    assert math.isfinite(percentage_change(current, previous))


@given(
    records=daily_record_lists(max_days=10),
    rate=st.floats(min_value=0.0, max_value=100.0),
    custom=signed_money,
)
@settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
def test_prop_pnl_metrics_are_finite(records, rate, custom):
    """
    Invariant 4c: every P&L metric and KPI change is finite.
    """
    settings_ = make_settings()
    metrics = compute_pnl_metrics(merge_daily_metrics(records), CostTotals(custom=custom), rate, settings_)
    for name, value in metrics:
        assert math.isfinite(value), name

    bundle = build_kpi_bundle(metrics, None)
    for name, change in bundle.changes.items():
        assert math.isfinite(change), name


@given(records=daily_record_lists(max_days=10), rate=st.floats(min_value=0.0, max_value=100.0))
@settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow, HealthCheck.filter_too_much])
def test_prop_net_profit_margin_matches_net_revenue(records, rate):
    """
    Invariant 5: net profit margin is net profit over net revenue, or 0.
    """
    metrics = compute_pnl_metrics(merge_daily_metrics(records), CostTotals(), rate, make_settings())
    assume(metrics.revenue > 1e-6)
    expected = metrics.net_profit / metrics.revenue * 100
    assert math.isclose(metrics.net_profit_margin, expected, rel_tol=1e-9, abs_tol=1e-9)


# =============================================================================
# Percentage-change sentinel
# =============================================================================


@given(current=st.floats(min_value=1e-9, max_value=1e12))
@settings(max_examples=100)
def test_prop_percentage_change_from_zero_is_sentinel(current):
    """
    Invariant 6: growth from zero is +100 / -100 depending on sign.
    """
    assert percentage_change(current, 0) == 100.0
    assert percentage_change(-current, 0) == -100.0

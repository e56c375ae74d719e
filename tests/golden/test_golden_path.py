"""
Golden Path (End-to-End) Tests for the P&L engine.

These tests run the complete pipeline on fixed datasets: source reads,
merging, cost evaluation and allocation, retention, bucketing, and KPI
assembly. Expected figures are computed by hand from the datasets.
"""

import pytest

from pnl_engine.engine.cost_evaluator import CostPolicyEvaluator
from pnl_engine.engine.kpis import compute_pnl_metrics
from pnl_engine.engine.merger import merge_daily_metrics
from pnl_engine.engine.overview_builder import OverviewBuilder
from pnl_engine.engine.pnl_builder import PnLBuilder
from pnl_engine.engine.retention import apply_return_loss
from pnl_engine.models.costs import CostContext, CostTotals
from tests.conftest import (
    MockAnalyticsSource,
    daily_rows,
    make_cost_policy,
    make_daily_record,
    make_date_range,
    make_return_rate_entry,
)

ORG = "org_golden"


# ============================================================================
# Scenario 1: 35-day monthly table reconciles with the whole-range aggregate
# ============================================================================


@pytest.mark.asyncio
async def test_golden_monthly_total_row_matches_table_range(settings):
    """
    Golden path: 35 daily rows, monthly buckets, one per-order policy.

    The Total row must equal an independent computation over the whole
    table range, and the bucket cost lines must add up to it.
    """
    records = daily_rows("2024-01-15", 35, refunds=40.0, marketing_cost=150.0)
    policy = make_cost_policy(name="Packaging", value=0.75, frequency="per_order")
    source = MockAnalyticsSource(records=records, policies=[policy])
    builder = PnLBuilder(source, settings)

    result = await builder.load_pnl_table(ORG, make_date_range("2024-01-15", "2024-02-18"), "monthly")

    independent = builder.compute_range_metrics(records, result.table_range, [policy], [])
    total_row = result.periods[-1]
    bucket_rows = result.periods[:-1]

    assert total_row.is_total
    assert total_row.metrics.net_profit == pytest.approx(independent.net_profit)
    assert sum(row.metrics.custom_costs for row in bucket_rows) == pytest.approx(
        total_row.metrics.custom_costs
    )
    assert total_row.metrics.custom_costs == pytest.approx(0.75 * 20 * 35)
    # Uniform rows give every bucket the same refund ratio, so retention is additive too
    assert sum(row.metrics.net_profit for row in bucket_rows) == pytest.approx(
        total_row.metrics.net_profit
    )


# ============================================================================
# Scenario 2: per-unit proration ignores window length
# ============================================================================


def test_golden_per_unit_policy():
    """A per-item policy of 2 against 150 units is 300 for any window."""
    policy = make_cost_policy(
        value=2, frequency="per_item", effective_from="2024-01-01", effective_to="2024-01-31"
    )
    evaluator = CostPolicyEvaluator()

    for start, end in (("2024-01-01", "2024-01-31"), ("2024-01-03", "2024-01-04")):
        window = make_date_range(start, end)
        context = CostContext(
            units_sold=150,
            range_start_ms=window.start_ms,
            range_end_ms=window.end_exclusive_ms,
        )
        assert evaluator.evaluate(policy, context) == 300


# ============================================================================
# Scenario 3: time-bound policy partially overlapping the window
# ============================================================================


def test_golden_time_bound_partial_overlap():
    """Policy [Jan 10, Jan 20] with value 100 against [Jan 15, Jan 25] is 50."""
    policy = make_cost_policy(value=100, effective_from="2024-01-10", effective_to="2024-01-20")
    window = make_date_range("2024-01-15", "2024-01-25")
    context = CostContext(range_start_ms=window.start_ms, range_end_ms=window.end_exclusive_ms)

    assert CostPolicyEvaluator().evaluate(policy, context) == pytest.approx(50)


# ============================================================================
# Scenario 4: manual return rate with zero recorded refunds
# ============================================================================


def test_golden_manual_return_rate(settings):
    """Revenue 1000, no refunds, 10% manual rate: RTO 100, factor 0.9, COGS 360."""
    aggregate = merge_daily_metrics([make_daily_record(revenue=1000, refunds=0, cogs=400)])

    factor = apply_return_loss(aggregate, 10)
    assert aggregate.rto_revenue_lost == pytest.approx(100)
    assert factor == pytest.approx(0.9)

    metrics = compute_pnl_metrics(
        merge_daily_metrics([make_daily_record(revenue=1000, refunds=0, cogs=400)]),
        CostTotals(),
        10,
        settings,
    )
    assert metrics.cogs == pytest.approx(360)
    assert metrics.retention_factor == pytest.approx(0.9)


# ============================================================================
# Scenario 5: month overview with policies and a return-rate override
# ============================================================================


@pytest.mark.asyncio
async def test_golden_month_overview(settings):
    """
    Golden path: a full March against a quieter February.

    Verifies the headline figures, the period-over-period change, and the
    calendar month-over-month growth in one pass.
    """
    records = daily_rows("2024-02-01", 29, revenue=800.0) + daily_rows("2024-03-01", 31)
    source = MockAnalyticsSource(
        records=records,
        policies=[
            make_cost_policy(name="Rent", value=3100, frequency="monthly"),
            make_cost_policy(name="Gateway", category="payment", value=1, calculation="percentage"),
        ],
        rate_entries=[make_return_rate_entry(rate_percent=5, effective_from="2024-03-01")],
    )
    march = make_date_range("2024-03-01", "2024-03-31")

    overview = await OverviewBuilder(source, settings).load_overview(ORG, march)

    assert overview.has_data and overview.has_full_coverage
    summary = overview.summary
    assert summary.revenue == 31000
    assert summary.custom_costs == pytest.approx(3100 * 31 / 30)
    assert summary.transaction_fees == pytest.approx(30 * 31 + 310)
    assert summary.rto_revenue_lost == pytest.approx(1550)
    assert summary.net_revenue == pytest.approx(29450)
    assert summary.cogs == pytest.approx(400 * 31 * 0.95)
    # The previous 31-day window only holds February rows
    assert summary.revenue_change == pytest.approx((31000 - 23200) / 23200 * 100)
    assert summary.calendar_mom_revenue_growth == pytest.approx((31000 - 23200) / 23200 * 100)

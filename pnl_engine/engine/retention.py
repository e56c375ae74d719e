"""
Return-Loss Retention Model.

Revenue lost to returns comes from two places: recorded refunds, and
return-to-origin (RTO) losses estimated from a manual return-rate override.
Their combined share of revenue determines the retention factor, the
fraction of return-sensitive costs (COGS, handling fees, taxes) that is
still incurred:

    refund_ratio   = min(refunds / revenue, 1)           (0 if revenue <= 0)
    rto_ratio      = min(rto_lost / revenue, 1)          (manual rate if revenue <= 0)
    combined_ratio = min(refund_ratio + rto_ratio, 1)
    factor         = max(0, 1 - combined_ratio)

Shipping, transaction fees, marketing, and custom costs are not scaled.
"""

from typing import Iterable, Optional

from pnl_engine.models.costs import ManualReturnRateEntry
from pnl_engine.models.metrics import AggregatedMetrics
from pnl_engine.utils.logging import get_logger
from pnl_engine.utils.numeric import clamp, to_number

logger = get_logger(__name__)


def resolve_manual_return_rate(
    entries: Iterable[ManualReturnRateEntry],
    window_start_ms: Optional[float] = None,
    window_end_ms: Optional[float] = None,
) -> float:
    """
    Return-rate percentage that applies to a window.

    Entries overlapping the window are considered and the most recently
    updated one wins. Inactive entries are skipped only when no window is
    given: a deactivated override still describes the historical window it
    covered.

    Args:
        entries: Manual return-rate overrides for the organization
        window_start_ms: Window start in epoch ms (None for "current")
        window_end_ms: Window end in epoch ms (None for "current")

    Returns:
        Rate in [0, 100], or 0 when no entry applies
    """
    has_window = window_start_ms is not None and window_end_ms is not None
    candidates = []
    for entry in entries:
        if not has_window:
            if entry.is_active:
                candidates.append(entry)
            continue
        if entry.window_start_ms <= window_end_ms and entry.window_end_ms >= window_start_ms:
            candidates.append(entry)

    if not candidates:
        return 0.0

    winner = max(candidates, key=lambda entry: entry.recency_ms)
    return clamp(winner.rate_percent, 0.0, 100.0)


def compute_rto_revenue_lost(revenue: float, manual_return_rate_percent: float) -> float:
    """Revenue presumed lost to returns: ``revenue x rate / 100``, bounded by [0, revenue]."""
    revenue = to_number(revenue)
    estimate = revenue * to_number(manual_return_rate_percent) / 100
    return min(max(estimate, 0.0), max(revenue, 0.0))


def retention_factor(
    revenue: float,
    refunds: float,
    rto_revenue_lost: float,
    manual_return_rate_percent: float,
) -> float:
    """
    Fraction of return-sensitive costs still incurred, always in [0, 1].

    Args:
        revenue: Top-line revenue for the window
        refunds: Refunded amount for the window
        rto_revenue_lost: Revenue presumed lost to RTO
        manual_return_rate_percent: Manual return-rate override in percent

    Returns:
        Retention factor
    """
    revenue = to_number(revenue)
    refunds = max(to_number(refunds), 0.0)
    rto_revenue_lost = max(to_number(rto_revenue_lost), 0.0)
    manual_rate = clamp(to_number(manual_return_rate_percent), 0.0, 100.0)

    if revenue > 0:
        refund_ratio = min(refunds / revenue, 1.0)
        rto_ratio = min(rto_revenue_lost / revenue, 1.0)
    else:
        refund_ratio = 0.0
        rto_ratio = manual_rate / 100

    combined_ratio = clamp(refund_ratio + rto_ratio, 0.0, 1.0)
    return clamp(1.0 - combined_ratio, 0.0, 1.0)


def apply_return_loss(aggregate: AggregatedMetrics, manual_return_rate_percent: float) -> float:
    """
    Attach the manual rate and derived RTO loss to ``aggregate``.

    Mutates the two post-hoc fields of the aggregate and returns the
    retention factor for it.
    """
    rate = clamp(to_number(manual_return_rate_percent), 0.0, 100.0)
    aggregate.manual_return_rate_percent = rate
    aggregate.rto_revenue_lost = compute_rto_revenue_lost(aggregate.revenue, rate)
    factor = retention_factor(
        aggregate.revenue,
        aggregate.refunds,
        aggregate.rto_revenue_lost,
        rate,
    )
    if factor < 1.0:
        logger.debug(
            "retention_factor_applied",
            manual_return_rate_percent=rate,
            refunds=aggregate.refunds,
            factor=factor,
        )
    return factor

"""
Cost Policy Evaluator - the amount a cost policy attributes to a window.

Evaluation steps:
1. A policy with value 0 contributes 0.
2. The policy's effective window (open ends default to the evaluation
   window) is intersected with the evaluation window; no overlap means 0.
3. The accrual mode decides the amount:
   - per-order: value x orders
   - per-unit: value x units
   - percentage-of-revenue: value / 100 x revenue (0 for non-positive revenue)
   - time-bound with both ends set: value x overlap / policy window length
   - otherwise, with a known frequency: value x overlap / frequency length
   - otherwise the flat value

Evaluation is pure and deterministic for identical inputs.
"""

from typing import Optional

from pnl_engine.models.costs import CostContext, CostPolicy
from pnl_engine.models.enums import AccrualMode
from pnl_engine.models.ranges import DAY_MS
from pnl_engine.utils.logging import get_logger

# Calendar lengths used to prorate recurring costs
FREQUENCY_DAYS = {
    "day": 1,
    "daily": 1,
    "week": 7,
    "weekly": 7,
    "biweekly": 14,
    "fortnight": 14,
    "fortnightly": 14,
    "month": 30,
    "monthly": 30,
    "bimonthly": 60,
    "quarter": 91,
    "quarterly": 91,
    "semiannual": 182,
    "semiannually": 182,
    "biannual": 182,
    "half_year": 182,
    "year": 365,
    "yearly": 365,
    "annual": 365,
    "annually": 365,
}


def frequency_duration_ms(frequency: Optional[str]) -> Optional[int]:
    """Length of one accrual period in ms, or None for non-duration frequencies."""
    if not frequency:
        return None
    days = FREQUENCY_DAYS.get(frequency.strip().lower())
    return days * DAY_MS if days is not None else None


def compute_overlap_ms(
    policy: CostPolicy,
    window_start_ms: float,
    window_end_ms: float,
) -> float:
    """
    Milliseconds shared by the policy's effective window and ``[start, end)``.

    Open policy ends default to the window's own ends.
    """
    policy_start = policy.effective_from if policy.effective_from is not None else window_start_ms
    policy_end = policy.effective_to if policy.effective_to is not None else window_end_ms
    overlap = min(window_end_ms, policy_end) - max(window_start_ms, policy_start)
    return max(0.0, overlap)


def policy_window_ms(policy: CostPolicy) -> Optional[float]:
    """Length of the policy's explicit window, or None when either end is open."""
    if not policy.has_explicit_window:
        return None
    length = policy.effective_to - policy.effective_from
    return length if length > 0 else None


class CostPolicyEvaluator:
    """
    Computes the monetary amount of a cost policy for an evaluation window.

    Stateless apart from its logger; one instance can be shared by any
    number of requests.
    """

    def __init__(self):
        self.logger = get_logger(__name__)

    def evaluate(self, policy: CostPolicy, context: CostContext) -> float:
        """
        Amount attributable to ``context``'s window under ``policy``.

        Args:
            policy: Cost policy to evaluate
            context: Orders, units, revenue, and ``[start, end)`` window

        Returns:
            Amount in the store currency (0 when the policy does not apply)
        """
        value = policy.value
        if value == 0:
            return 0.0

        overlap = compute_overlap_ms(policy, context.range_start_ms, context.range_end_ms)
        if overlap <= 0:
            return 0.0

        mode = policy.accrual_mode

        if mode == AccrualMode.PER_ORDER:
            return value * context.orders_count

        if mode == AccrualMode.PER_UNIT:
            return value * context.units_sold

        if mode == AccrualMode.PERCENTAGE_REVENUE:
            if context.revenue <= 0:
                return 0.0
            return value / 100 * context.revenue

        window = policy_window_ms(policy) if mode == AccrualMode.TIME_BOUND else None
        if window is not None:
            return value * (overlap / window)

        duration = frequency_duration_ms(policy.frequency)
        if duration is not None:
            return value * (overlap / duration)

        self.logger.debug(
            "cost_policy_flat_value",
            policy_id=policy.policy_id,
            frequency=policy.frequency,
        )
        return value

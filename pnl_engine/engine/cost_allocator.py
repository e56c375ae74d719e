"""
Cost Allocator - spreads a policy's whole-range amount across period buckets.

The policy is evaluated once against the whole table range; the result is
then split across buckets in proportion to a per-bucket weight:

- per-order policies weigh buckets by orders
- per-unit policies weigh buckets by units sold
- percentage-of-revenue policies weigh buckets by revenue
- every other mode weighs buckets by overlap milliseconds

Buckets are weighed in overlap milliseconds only when no overlapping
bucket has any activity of the natural kind; otherwise idle buckets get
nothing. The floating-point
remainder of the split is assigned to the last bucket with a non-zero
share, which keeps the bucket allocations summing to the whole-range
amount; the Total row of a P&L table depends on that.
"""

from typing import Iterable, Optional, Sequence

from pnl_engine.engine.cost_evaluator import CostPolicyEvaluator, compute_overlap_ms
from pnl_engine.models.costs import CostContext, CostPolicy, CostTotals
from pnl_engine.models.enums import AccrualMode
from pnl_engine.models.pnl import PeriodBucket
from pnl_engine.utils.logging import get_logger


def _natural_weight(mode: AccrualMode, bucket: PeriodBucket, overlap_ms: float) -> float:
    aggregate = bucket.aggregate
    if mode == AccrualMode.PER_ORDER:
        return aggregate.orders
    if mode == AccrualMode.PER_UNIT:
        return aggregate.units_sold
    if mode == AccrualMode.PERCENTAGE_REVENUE:
        return aggregate.revenue
    return overlap_ms


class CostAllocator:
    """
    Distributes cost policy amounts over P&L table buckets.

    Attributes:
        evaluator: Evaluator used for the whole-range amount
    """

    def __init__(self, evaluator: Optional[CostPolicyEvaluator] = None):
        self.evaluator = evaluator or CostPolicyEvaluator()
        self.logger = get_logger(__name__)

    def bucket_weights(self, policy: CostPolicy, buckets: Sequence[PeriodBucket]) -> list[float]:
        """
        Allocation weight of each bucket for ``policy``.

        Buckets without overlap weigh 0. When no overlapping bucket has a
        positive natural weight (orders, units, or revenue), every
        overlapping bucket is weighed by its overlap milliseconds instead.
        """
        mode = policy.accrual_mode
        overlaps = [
            compute_overlap_ms(policy, bucket.start_ms, bucket.end_exclusive_ms) for bucket in buckets
        ]
        weights = [
            max(_natural_weight(mode, bucket, overlap), 0.0) if overlap > 0 else 0.0
            for bucket, overlap in zip(buckets, overlaps)
        ]
        if sum(weights) > 0:
            return weights
        return [max(overlap, 0.0) for overlap in overlaps]

    def allocate(
        self,
        policy: CostPolicy,
        total_context: CostContext,
        buckets: Sequence[PeriodBucket],
    ) -> dict[str, float]:
        """
        Split the policy's whole-range amount across ``buckets``.

        Args:
            policy: Cost policy to allocate
            total_context: Whole table range context the total is evaluated against
            buckets: Period buckets covering the table range

        Returns:
            Mapping of bucket key to allocated amount; the values sum to
            ``evaluator.evaluate(policy, total_context)``
        """
        allocations = {bucket.key: 0.0 for bucket in buckets}
        total = self.evaluator.evaluate(policy, total_context)
        if total == 0 or not buckets:
            return allocations

        weights = self.bucket_weights(policy, buckets)
        weight_sum = sum(weights)
        if weight_sum <= 0:
            self.logger.warning(
                "cost_allocation_without_overlap",
                policy_id=policy.policy_id,
                total=total,
                buckets=len(buckets),
            )
            return allocations

        allocated = 0.0
        last_key: Optional[str] = None
        for bucket, weight in zip(buckets, weights):
            if weight <= 0:
                continue
            share = total * (weight / weight_sum)
            allocations[bucket.key] += share
            allocated += share
            if share != 0:
                last_key = bucket.key

        remainder = total - allocated
        if last_key is not None and remainder != 0:
            allocations[last_key] += remainder

        return allocations

    def allocate_all(
        self,
        policies: Iterable[CostPolicy],
        total_context: CostContext,
        buckets: Sequence[PeriodBucket],
    ) -> dict[str, CostTotals]:
        """
        Allocate every policy and sum the shares per bucket and category.

        Returns:
            Mapping of bucket key to the bucket's CostTotals
        """
        per_bucket = {bucket.key: CostTotals() for bucket in buckets}
        for policy in policies:
            for key, amount in self.allocate(policy, total_context, buckets).items():
                if amount:
                    per_bucket[key].add(policy.category, amount)
        return per_bucket

    def evaluate_all(self, policies: Iterable[CostPolicy], context: CostContext) -> CostTotals:
        """Evaluate every policy against one window and sum per category."""
        totals = CostTotals()
        for policy in policies:
            amount = self.evaluator.evaluate(policy, context)
            if amount:
                totals.add(policy.category, amount)
        return totals

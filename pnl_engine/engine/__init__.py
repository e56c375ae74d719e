"""
P&L engine core components.

- Merger: folds daily metric snapshots into range aggregates
- Cost evaluation and allocation: prorates cost policies over windows and
  splits them across period buckets
- Retention: turns refunds and manual return rates into a retention factor
  for return-sensitive costs
- Periods: daily/weekly/monthly bucket generation
- Builders: range overviews and bucketed P&L tables
"""

__all__ = [
    "CostAllocator",
    "CostPolicyEvaluator",
    "OverviewBuilder",
    "PnLBuilder",
    "merge_daily_metrics",
]

from pnl_engine.engine.cost_allocator import CostAllocator
from pnl_engine.engine.cost_evaluator import CostPolicyEvaluator
from pnl_engine.engine.merger import merge_daily_metrics
from pnl_engine.engine.overview_builder import OverviewBuilder
from pnl_engine.engine.pnl_builder import PnLBuilder

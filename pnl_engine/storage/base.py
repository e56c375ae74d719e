"""
Abstract analytics source interface.

The P&L engine does not own its data: daily metric snapshots, cost
policies, manual return-rate overrides, and ad-platform insights are
written by ingestion and configuration paths elsewhere. This module defines
the read contract the engine consumes. Every method is a coroutine so that
independent reads for one request can be awaited together.

Implementations must not retry or swallow failures; errors propagate to the
caller, which decides whether to repeat the whole request.
"""

from abc import ABC, abstractmethod

from pnl_engine.models.costs import CostPolicy, ManualReturnRateEntry
from pnl_engine.models.metrics import AdInsightTotals, DailyMetricRecord
from pnl_engine.models.ranges import DateRange


class AnalyticsSource(ABC):
    """
    Abstract base class for analytics data sources.

    Implementations should ensure:
    - Reads are side-effect free
    - Concurrent calls for the same organization are safe
    - Failures are raised as StorageError (or the implementation's own
      error type) with structured logging, never returned as empty data
    """

    @abstractmethod
    async def fetch_daily_metrics(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> list[DailyMetricRecord]:
        """
        Read daily metric snapshots for an organization.

        Args:
            organization_id: Organization whose metrics to read
            date_range: Inclusive calendar-date bounds

        Returns:
            Snapshots ordered ascending by date; empty when none exist

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def fetch_active_cost_policies(self, organization_id: str) -> list[CostPolicy]:
        """
        Read the organization's active cost policies.

        Args:
            organization_id: Organization whose policies to read

        Returns:
            Cost policies with ``is_active`` set

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def fetch_manual_return_rate_entries(
        self,
        organization_id: str,
    ) -> list[ManualReturnRateEntry]:
        """
        Read every manual return-rate override, active or not.

        Inactive entries are still returned because they apply to the
        historical windows they covered.

        Args:
            organization_id: Organization whose overrides to read

        Returns:
            All overrides for the organization

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def fetch_ad_insight_totals(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> AdInsightTotals:
        """
        Read summed ad-platform insights for a window.

        Account-level rows are preferred over campaign/ad-level rows when
        both exist so that spend is not counted once per level.

        Args:
            organization_id: Organization whose insights to read
            date_range: Inclusive calendar-date bounds

        Returns:
            AdInsightTotals (all zero when there are no rows)

        Raises:
            StorageError: If the read fails
        """
        pass

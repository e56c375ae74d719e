"""
Pytest configuration and shared fixtures for the P&L engine test suite.

Provides record factories, an in-memory analytics source, environment
isolation, and reusable fixtures across all test types (unit, integration,
golden, property-based).
"""

import os
import tempfile
import uuid as _uuid
from datetime import date, timedelta
from typing import Iterable, Optional

import pytest

# Set testing environment BEFORE importing settings.
# Use a temp path (must not exist - DuckDB creates the file).
_test_db_path = os.path.join(tempfile.gettempdir(), f"pnl_engine_test_{_uuid.uuid4().hex[:8]}.duckdb")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path


# ---------------------------------------------------------------------------
# Model factories - reusable across all test suites
# ---------------------------------------------------------------------------

from pnl_engine.config import Settings
from pnl_engine.engine.merger import merge_ad_insights
from pnl_engine.models.costs import CostPolicy, ManualReturnRateEntry
from pnl_engine.models.metrics import AdInsightTotals, DailyMetricRecord
from pnl_engine.models.ranges import DateRange
from pnl_engine.storage.base import AnalyticsSource
from pnl_engine.utils.logging import configure_logging

configure_logging()


def make_daily_record(day: str = "2024-01-01", **overrides) -> DailyMetricRecord:
    """Build a DailyMetricRecord with round, realistic defaults."""
    defaults = dict(
        date=day,
        revenue=1000.0,
        discounts=50.0,
        refunds=0.0,
        orders=20,
        units_sold=30,
        cogs=400.0,
        shipping_cost=50.0,
        transaction_fees=30.0,
        handling_fees=10.0,
        taxes=20.0,
        marketing_cost=100.0,
        blended_ctr=0.0,
        paid_customers=8,
        total_customers=10,
        cancelled_orders=0,
        returned_orders=0,
        customer_breakdown={"new_customers": 5, "returning_customers": 3, "repeat_customers": 2},
    )
    defaults.update(overrides)
    return DailyMetricRecord.model_validate(defaults)


def daily_rows(start: str, days: int, **overrides) -> list[DailyMetricRecord]:
    """``days`` consecutive records starting at ``start``, all sharing ``overrides``."""
    first = date.fromisoformat(start)
    return [
        make_daily_record((first + timedelta(days=offset)).isoformat(), **overrides)
        for offset in range(days)
    ]


def make_cost_policy(**overrides) -> CostPolicy:
    """Build an active fixed custom CostPolicy."""
    defaults = dict(
        policy_id=f"policy_{_uuid.uuid4().hex[:8]}",
        name="Warehouse rent",
        category="custom",
        calculation="fixed",
        value=100.0,
        frequency=None,
        is_active=True,
    )
    defaults.update(overrides)
    return CostPolicy.model_validate(defaults)


def make_return_rate_entry(**overrides) -> ManualReturnRateEntry:
    """Build an open-ended manual return-rate override."""
    defaults = dict(
        entry_id=f"rate_{_uuid.uuid4().hex[:8]}",
        rate_percent=10.0,
        is_active=True,
        effective_from="2020-01-01",
    )
    defaults.update(overrides)
    return ManualReturnRateEntry.model_validate(defaults)


def make_date_range(start_date: str = "2024-01-01", end_date: str = "2024-01-31") -> DateRange:
    return DateRange(start_date=start_date, end_date=end_date)


def make_settings(**overrides) -> Settings:
    """Settings isolated from any .env file in the working directory."""
    return Settings(_env_file=None, **overrides)


def make_ad_row(day: str, entity_type: Optional[str] = "account", **overrides) -> dict:
    row = dict(
        insight_id=f"ad_{_uuid.uuid4().hex[:8]}",
        date=day,
        entity_type=entity_type,
        spend=100.0,
        impressions=10000.0,
        clicks=200.0,
        unique_clicks=180.0,
        conversions=10.0,
        conversion_value=500.0,
        reach=5000.0,
    )
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# In-memory analytics source
# ---------------------------------------------------------------------------

class MockAnalyticsSource(AnalyticsSource):
    """
    In-memory AnalyticsSource with the same filtering rules as DuckDB.

    Records every call so tests can assert which windows were requested.
    """

    def __init__(
        self,
        records: Iterable[DailyMetricRecord] = (),
        policies: Iterable[CostPolicy] = (),
        rate_entries: Iterable[ManualReturnRateEntry] = (),
        ad_rows: Iterable[dict] = (),
    ):
        self.records = sorted(records, key=lambda record: record.date)
        self.policies = list(policies)
        self.rate_entries = list(rate_entries)
        self.ad_rows = list(ad_rows)
        self.calls: list[tuple] = []

    async def fetch_daily_metrics(self, organization_id, date_range):
        self.calls.append(("daily_metrics", organization_id, str(date_range)))
        return [record for record in self.records if date_range.contains(record.date)]

    async def fetch_active_cost_policies(self, organization_id):
        self.calls.append(("cost_policies", organization_id))
        return [policy for policy in self.policies if policy.is_active]

    async def fetch_manual_return_rate_entries(self, organization_id):
        self.calls.append(("manual_return_rates", organization_id))
        return list(self.rate_entries)

    async def fetch_ad_insight_totals(self, organization_id, date_range) -> AdInsightTotals:
        self.calls.append(("ad_insights", organization_id, str(date_range)))
        return merge_ad_insights(row for row in self.ad_rows if date_range.contains(row["date"]))

    def requested_ranges(self, kind: str) -> list[str]:
        return [call[2] for call in self.calls if call[0] == kind]


class FailingAnalyticsSource(MockAnalyticsSource):
    """Source whose daily-metric reads always fail."""

    def __init__(self, error: Exception, **kwargs):
        super().__init__(**kwargs)
        self.error = error

    async def fetch_daily_metrics(self, organization_id, date_range):
        raise self.error


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    """Default engine settings without .env influence."""
    return make_settings()


@pytest.fixture
def january() -> DateRange:
    return make_date_range("2024-01-01", "2024-01-31")


@pytest.fixture
def mock_source() -> MockAnalyticsSource:
    """Source with a full January and December of identical daily rows."""
    return MockAnalyticsSource(records=daily_rows("2023-12-01", 62))


@pytest.fixture
def duckdb_source(tmp_path):
    """DuckDB source backed by a fresh file per test."""
    from pnl_engine.storage.duckdb_storage import DuckDBAnalyticsSource

    source = DuckDBAnalyticsSource(db_path=str(tmp_path / "analytics.duckdb"), threads=1)
    yield source
    source.close()


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Keep cached settings and sources from leaking between tests."""
    from pnl_engine.config import get_settings
    from pnl_engine.storage import get_source

    get_settings.cache_clear()
    get_source.cache_clear()
    yield
    get_settings.cache_clear()
    get_source.cache_clear()

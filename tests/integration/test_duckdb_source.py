"""
Integration tests for the DuckDB analytics source.

Each test writes to a fresh database file and reads back through both the
blocking helpers and the async AnalyticsSource contract.
"""

import duckdb
import pytest

from pnl_engine.engine.overview_builder import OverviewBuilder
from pnl_engine.engine.pnl_builder import PnLBuilder
from pnl_engine.storage import DuckDBAnalyticsSource, StorageError, get_source
from tests.conftest import (
    daily_rows,
    make_ad_row,
    make_cost_policy,
    make_daily_record,
    make_date_range,
    make_return_rate_entry,
)

pytestmark = pytest.mark.integration

ORG = "org_duck"


class TestDuckDBWrites:
    def test_upsert_and_read_daily_metrics(self, duckdb_source):
        written = duckdb_source.upsert_daily_metrics(ORG, daily_rows("2024-01-01", 5))

        assert written == 5
        rows = duckdb_source.read_daily_metrics(ORG, make_date_range("2024-01-02", "2024-01-04"))
        assert [row.date for row in rows] == ["2024-01-02", "2024-01-03", "2024-01-04"]
        assert rows[0].revenue == 1000.0
        assert rows[0].customer_breakdown.new_customers == 5

    def test_upsert_replaces_same_day(self, duckdb_source):
        duckdb_source.upsert_daily_metrics(ORG, [make_daily_record("2024-01-01")])
        duckdb_source.upsert_daily_metrics(ORG, [make_daily_record("2024-01-01", revenue=2500)])

        rows = duckdb_source.read_daily_metrics(ORG, make_date_range("2024-01-01", "2024-01-01"))
        assert len(rows) == 1
        assert rows[0].revenue == 2500

    def test_organizations_are_isolated(self, duckdb_source):
        duckdb_source.upsert_daily_metrics(ORG, daily_rows("2024-01-01", 2))
        duckdb_source.upsert_daily_metrics("org_other", daily_rows("2024-01-01", 3))

        rows = duckdb_source.read_daily_metrics(ORG, make_date_range("2024-01-01", "2024-01-31"))
        assert len(rows) == 2

    def test_empty_write_is_noop(self, duckdb_source):
        assert duckdb_source.upsert_daily_metrics(ORG, []) == 0

    def test_cost_policies_active_filter(self, duckdb_source):
        duckdb_source.upsert_cost_policies(
            ORG,
            [
                make_cost_policy(policy_id="rent", value=500),
                make_cost_policy(policy_id="old", value=50, is_active=False),
            ],
        )

        active = duckdb_source.read_cost_policies(ORG)
        everything = duckdb_source.read_cost_policies(ORG, active_only=False)
        assert [policy.policy_id for policy in active] == ["rent"]
        assert len(everything) == 2

    def test_cost_policy_round_trip_keeps_window(self, duckdb_source):
        policy = make_cost_policy(
            policy_id="promo", effective_from="2024-01-10", effective_to="2024-01-20"
        )
        duckdb_source.upsert_cost_policies(ORG, [policy])

        stored = duckdb_source.read_cost_policies(ORG)[0]
        assert stored.effective_from == policy.effective_from
        assert stored.effective_to == policy.effective_to

    def test_manual_return_rates_include_inactive(self, duckdb_source):
        duckdb_source.upsert_manual_return_rates(
            ORG,
            [
                make_return_rate_entry(entry_id="a", rate_percent=5),
                make_return_rate_entry(entry_id="b", rate_percent=8, is_active=False),
            ],
        )

        entries = duckdb_source.read_manual_return_rates(ORG)
        assert [entry.rate_percent for entry in entries] == [5, 8]

    def test_ad_insight_rows_filtered_by_entity_type(self, duckdb_source):
        duckdb_source.upsert_ad_insights(
            ORG,
            [
                make_ad_row("2024-01-01", "account", spend=100),
                make_ad_row("2024-01-01", "campaign", spend=70),
            ],
        )

        date_range = make_date_range("2024-01-01", "2024-01-01")
        assert len(duckdb_source.read_ad_insight_rows(ORG, date_range)) == 2
        campaign_rows = duckdb_source.read_ad_insight_rows(ORG, date_range, entity_type="campaign")
        assert [row["spend"] for row in campaign_rows] == [70]

    def test_invalid_ad_row_raises_storage_error(self, duckdb_source):
        with pytest.raises(StorageError):
            duckdb_source.upsert_ad_insights(
                ORG, [{"insight_id": None, "date": "2024-01-01", "spend": 1}]
            )


class TestDuckDBAsyncContract:
    @pytest.mark.asyncio
    async def test_fetch_daily_metrics(self, duckdb_source):
        duckdb_source.upsert_daily_metrics(ORG, daily_rows("2024-01-01", 10))

        rows = await duckdb_source.fetch_daily_metrics(ORG, make_date_range("2024-01-05", "2024-01-31"))
        assert len(rows) == 6

    @pytest.mark.asyncio
    async def test_fetch_active_cost_policies(self, duckdb_source):
        duckdb_source.upsert_cost_policies(
            ORG, [make_cost_policy(policy_id="x"), make_cost_policy(policy_id="y", is_active=False)]
        )

        policies = await duckdb_source.fetch_active_cost_policies(ORG)
        assert [policy.policy_id for policy in policies] == ["x"]

    @pytest.mark.asyncio
    async def test_fetch_ad_insight_totals_prefers_account_level(self, duckdb_source):
        duckdb_source.upsert_ad_insights(
            ORG,
            [
                make_ad_row("2024-01-01", "account", spend=100),
                make_ad_row("2024-01-02", "account", spend=50),
                make_ad_row("2024-01-01", "campaign", spend=100),
                make_ad_row("2024-01-01", "ad", spend=100),
            ],
        )

        totals = await duckdb_source.fetch_ad_insight_totals(
            ORG, make_date_range("2024-01-01", "2024-01-31")
        )
        assert totals.spend == 150

    @pytest.mark.asyncio
    async def test_fetch_ad_insight_totals_without_account_rows(self, duckdb_source):
        duckdb_source.upsert_ad_insights(
            ORG,
            [
                make_ad_row("2024-01-01", "campaign", spend=30),
                make_ad_row("2024-01-01", "campaign", spend=20),
            ],
        )

        totals = await duckdb_source.fetch_ad_insight_totals(
            ORG, make_date_range("2024-01-01", "2024-01-01")
        )
        assert totals.spend == 50

    @pytest.mark.asyncio
    async def test_close_releases_worker_thread_connections(self, duckdb_source):
        duckdb_source.upsert_daily_metrics(ORG, daily_rows("2024-01-01", 3))
        await duckdb_source.fetch_daily_metrics(ORG, make_date_range("2024-01-01", "2024-01-31"))
        await duckdb_source.fetch_active_cost_policies(ORG)

        opened = list(duckdb_source._connections)
        assert duckdb_source.open_connection_count >= 2

        duckdb_source.close()

        assert duckdb_source.open_connection_count == 0
        for connection in opened:
            with pytest.raises(duckdb.Error):
                connection.execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_reads_reconnect_after_close(self, duckdb_source):
        duckdb_source.upsert_daily_metrics(ORG, daily_rows("2024-01-01", 2))
        duckdb_source.close()

        rows = await duckdb_source.fetch_daily_metrics(ORG, make_date_range("2024-01-01", "2024-01-31"))

        assert len(rows) == 2
        assert duckdb_source.open_connection_count >= 1

    @pytest.mark.asyncio
    async def test_builders_over_duckdb(self, duckdb_source, settings):
        duckdb_source.upsert_daily_metrics(ORG, daily_rows("2023-12-01", 62))
        duckdb_source.upsert_cost_policies(ORG, [make_cost_policy(value=1, frequency="per_order")])
        january = make_date_range("2024-01-01", "2024-01-31")

        overview = await OverviewBuilder(duckdb_source, settings).load_overview(ORG, january)
        table = await PnLBuilder(duckdb_source, settings).load_pnl_table(ORG, january, "weekly")

        assert overview.has_full_coverage
        assert overview.summary.custom_costs == pytest.approx(620)
        assert table.totals.custom_costs == pytest.approx(20 * 31)
        assert table.table_range.start_date == "2024-01-01"
        assert table.table_range.end_date == "2024-02-04"


def test_get_source_uses_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "configured.duckdb"))

    source = get_source()

    assert isinstance(source, DuckDBAnalyticsSource)
    assert source.db_path == tmp_path / "configured.duckdb"
    assert get_source() is source
    source.close()

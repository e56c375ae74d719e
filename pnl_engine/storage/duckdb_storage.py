"""
DuckDB analytics source.

A local, file-backed implementation of ``AnalyticsSource`` used for
development, tests, and single-node deployments. Snapshot, policy, and
override records are stored as JSON payloads keyed by organization so that
the stored shape is exactly what the ingestion pipeline wrote; ad insights
are stored as numeric columns so that the account-level preference can be
applied per window.

DuckDB calls are blocking, so every async read runs in a worker thread via
``asyncio.to_thread``; each worker thread keeps its own connection.
"""

import asyncio
import json
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Optional

import duckdb

from pnl_engine.engine.merger import AD_INSIGHT_FIELDS, merge_ad_insights
from pnl_engine.models.costs import CostPolicy, ManualReturnRateEntry
from pnl_engine.models.metrics import AdInsightTotals, DailyMetricRecord
from pnl_engine.models.ranges import DateRange
from pnl_engine.utils.logging import get_logger

from .base import AnalyticsSource

logger = get_logger(__name__)


class StorageError(Exception):
    """Base exception for all analytics source failures."""

    pass


class DuckDBAnalyticsSource(AnalyticsSource):
    """
    DuckDB implementation of the analytics source.

    Attributes:
        db_path: Path to the DuckDB database file
        threads: DuckDB worker thread setting applied to each connection
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _connections: Every open per-thread connection, so close() can reach
            connections opened by worker threads
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/analytics.duckdb", threads: int = 4):
        """
        Initialize the DuckDB analytics source.

        Args:
            db_path: Path to DuckDB database file
            threads: DuckDB thread count per connection
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.threads = threads

        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list = []
        self._connections_lock = threading.Lock()
        self._initialized = False

        logger.info("duckdb_source_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB connection.

        Yields:
            DuckDB connection instance

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                connection = duckdb.connect(str(self.db_path))
                connection.execute(f"SET threads TO {int(self.threads)}")
                self._local.connection = connection
                with self._connections_lock:
                    self._connections.append(connection)
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except Exception as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        yield self._local.connection

    def _initialize_schema(self):
        """
        Create tables. Idempotent.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS daily_metrics (
                            organization_id VARCHAR NOT NULL,
                            metric_date VARCHAR NOT NULL,
                            payload JSON NOT NULL,
                            written_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                            PRIMARY KEY (organization_id, metric_date)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS cost_policies (
                            policy_id VARCHAR PRIMARY KEY,
                            organization_id VARCHAR NOT NULL,
                            is_active BOOLEAN NOT NULL,
                            payload JSON NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS manual_return_rates (
                            entry_id VARCHAR PRIMARY KEY,
                            organization_id VARCHAR NOT NULL,
                            payload JSON NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS ad_insights (
                            insight_id VARCHAR PRIMARY KEY,
                            organization_id VARCHAR NOT NULL,
                            insight_date VARCHAR NOT NULL,
                            entity_type VARCHAR,
                            entity_id VARCHAR,
                            spend DOUBLE DEFAULT 0,
                            impressions DOUBLE DEFAULT 0,
                            clicks DOUBLE DEFAULT 0,
                            unique_clicks DOUBLE DEFAULT 0,
                            conversions DOUBLE DEFAULT 0,
                            conversion_value DOUBLE DEFAULT 0,
                            reach DOUBLE DEFAULT 0
                        )
                    """)

                self._initialized = True
                logger.info("duckdb_schema_initialized")

            except StorageError:
                raise
            except Exception as e:
                logger.error("duckdb_schema_init_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    def close(self) -> None:
        """Close every connection opened by any thread."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
            self._local = threading.local()

        for connection in connections:
            connection.close()
        logger.debug("duckdb_connections_closed", count=len(connections))

    @property
    def open_connection_count(self) -> int:
        with self._connections_lock:
            return len(self._connections)

    # =========================================================================
    # Writes (seeding and ingestion helpers)
    # =========================================================================

    def _write_many(self, statement: str, rows: list[list], event: str) -> int:
        if not rows:
            return 0
        try:
            with self._get_connection() as conn:
                conn.begin()
                try:
                    conn.executemany(statement, rows)
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
            logger.info(event, count=len(rows))
            return len(rows)
        except Exception as e:
            logger.error("duckdb_write_failed", operation=event, error=str(e))
            raise StorageError(f"Failed to write {event}: {e}") from e

    def upsert_daily_metrics(
        self,
        organization_id: str,
        records: Iterable[DailyMetricRecord],
    ) -> int:
        """
        Insert or replace daily snapshots for an organization.

        Returns:
            Number of snapshots written

        Raises:
            StorageError: If the write fails
        """
        rows = [
            [organization_id, record.date, json.dumps(record.model_dump(mode="json"))]
            for record in records
        ]
        return self._write_many(
            "INSERT OR REPLACE INTO daily_metrics (organization_id, metric_date, payload) "
            "VALUES (?, ?, ?)",
            rows,
            "daily_metrics_written",
        )

    def upsert_cost_policies(self, organization_id: str, policies: Iterable[CostPolicy]) -> int:
        """Insert or replace cost policies for an organization."""
        rows = [
            [
                policy.policy_id,
                organization_id,
                policy.is_active,
                json.dumps(policy.model_dump(mode="json")),
            ]
            for policy in policies
        ]
        return self._write_many(
            "INSERT OR REPLACE INTO cost_policies (policy_id, organization_id, is_active, payload) "
            "VALUES (?, ?, ?, ?)",
            rows,
            "cost_policies_written",
        )

    def upsert_manual_return_rates(
        self,
        organization_id: str,
        entries: Iterable[ManualReturnRateEntry],
    ) -> int:
        """Insert or replace manual return-rate overrides for an organization."""
        rows = [
            [entry.entry_id, organization_id, json.dumps(entry.model_dump(mode="json"))]
            for entry in entries
        ]
        return self._write_many(
            "INSERT OR REPLACE INTO manual_return_rates (entry_id, organization_id, payload) "
            "VALUES (?, ?, ?)",
            rows,
            "manual_return_rates_written",
        )

    def upsert_ad_insights(self, organization_id: str, insights: Iterable[dict]) -> int:
        """
        Insert or replace ad-insight rows for an organization.

        Each row needs ``insight_id`` and ``date``; ``entity_type`` is
        "account", "campaign", "ad", or None.
        """
        rows = [
            [
                insight["insight_id"],
                organization_id,
                insight["date"],
                insight.get("entity_type"),
                insight.get("entity_id"),
                *[float(insight.get(name) or 0) for name in AD_INSIGHT_FIELDS],
            ]
            for insight in insights
        ]
        columns = ", ".join(AD_INSIGHT_FIELDS)
        placeholders = ", ".join(["?"] * (5 + len(AD_INSIGHT_FIELDS)))
        return self._write_many(
            "INSERT OR REPLACE INTO ad_insights "
            f"(insight_id, organization_id, insight_date, entity_type, entity_id, {columns}) "
            f"VALUES ({placeholders})",
            rows,
            "ad_insights_written",
        )

    # =========================================================================
    # Blocking reads
    # =========================================================================

    def _query(self, query: str, params: list, event: str) -> list[tuple]:
        try:
            with self._get_connection() as conn:
                return conn.execute(query, params).fetchall()
        except Exception as e:
            logger.error("duckdb_query_failed", operation=event, error=str(e))
            raise StorageError(f"Failed to read {event}: {e}") from e

    def read_daily_metrics(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> list[DailyMetricRecord]:
        """Blocking read of daily snapshots in ascending date order."""
        rows = self._query(
            """
            SELECT payload
            FROM daily_metrics
            WHERE organization_id = ? AND metric_date >= ? AND metric_date <= ?
            ORDER BY metric_date ASC
            """,
            [organization_id, date_range.start_date, date_range.end_date],
            "daily_metrics",
        )
        return [DailyMetricRecord.model_validate(json.loads(row[0])) for row in rows]

    def read_cost_policies(
        self,
        organization_id: str,
        active_only: bool = True,
    ) -> list[CostPolicy]:
        """Blocking read of cost policies."""
        query = "SELECT payload FROM cost_policies WHERE organization_id = ?"
        if active_only:
            query += " AND is_active"
        query += " ORDER BY policy_id ASC"
        rows = self._query(query, [organization_id], "cost_policies")
        return [CostPolicy.model_validate(json.loads(row[0])) for row in rows]

    def read_manual_return_rates(self, organization_id: str) -> list[ManualReturnRateEntry]:
        """Blocking read of every manual return-rate override."""
        rows = self._query(
            "SELECT payload FROM manual_return_rates WHERE organization_id = ? ORDER BY entry_id ASC",
            [organization_id],
            "manual_return_rates",
        )
        return [ManualReturnRateEntry.model_validate(json.loads(row[0])) for row in rows]

    def read_ad_insight_rows(
        self,
        organization_id: str,
        date_range: DateRange,
        entity_type: Optional[str] = None,
    ) -> list[dict]:
        """Blocking read of raw ad-insight rows in a window."""
        columns = ", ".join(AD_INSIGHT_FIELDS)
        query = f"""
            SELECT entity_type, {columns}
            FROM ad_insights
            WHERE organization_id = ? AND insight_date >= ? AND insight_date <= ?
        """
        params = [organization_id, date_range.start_date, date_range.end_date]
        if entity_type:
            query += " AND entity_type = ?"
            params.append(entity_type)
        query += " ORDER BY insight_date ASC, insight_id ASC"
        rows = self._query(query, params, "ad_insights")
        return [dict(zip(("entity_type", *AD_INSIGHT_FIELDS), row)) for row in rows]

    # =========================================================================
    # AnalyticsSource contract
    # =========================================================================

    async def fetch_daily_metrics(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> list[DailyMetricRecord]:
        return await asyncio.to_thread(self.read_daily_metrics, organization_id, date_range)

    async def fetch_active_cost_policies(self, organization_id: str) -> list[CostPolicy]:
        return await asyncio.to_thread(self.read_cost_policies, organization_id, True)

    async def fetch_manual_return_rate_entries(
        self,
        organization_id: str,
    ) -> list[ManualReturnRateEntry]:
        return await asyncio.to_thread(self.read_manual_return_rates, organization_id)

    async def fetch_ad_insight_totals(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> AdInsightTotals:
        rows = await asyncio.to_thread(self.read_ad_insight_rows, organization_id, date_range)
        return merge_ad_insights(rows)

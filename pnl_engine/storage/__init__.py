"""
Analytics data sources.

The engine reads daily metric snapshots, cost policies, manual return-rate
overrides, and ad-insight totals through the ``AnalyticsSource`` contract.
DuckDB is the bundled implementation.
"""

from functools import lru_cache

from pnl_engine.config import get_settings

from .base import AnalyticsSource
from .duckdb_storage import DuckDBAnalyticsSource, StorageError


@lru_cache
def get_source() -> AnalyticsSource:
    """
    Get cached analytics source instance (singleton).

    Returns:
        AnalyticsSource implementation configured from settings
    """
    settings = get_settings()
    return DuckDBAnalyticsSource(db_path=settings.db_path, threads=settings.db_threads)


__all__ = [
    "AnalyticsSource",
    "DuckDBAnalyticsSource",
    "StorageError",
    "get_source",
]

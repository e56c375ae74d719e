"""
Time-windowed cost allocation and P&L engine for e-commerce analytics.

Merges daily metric snapshots, prorates merchant cost policies across
arbitrary windows and period buckets, applies return-loss retention, and
builds KPI overviews and bucketed P&L tables.
"""

__version__ = "1.0.0"

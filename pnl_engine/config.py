"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pnl_engine.models.enums import NewCustomerSource, ShippingDedupMode


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_path: str = Field(default="./data/analytics.duckdb", description="DuckDB file path")
    db_threads: int = Field(default=4, ge=1, description="DuckDB thread count")

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Cost policy merge behaviour
    shipping_dedup_mode: ShippingDedupMode = Field(
        default=ShippingDedupMode.TOLERANCE,
        description="How shipping-policy amounts combine with snapshot shipping cost",
    )
    shipping_dedup_tolerance_ratio: float = Field(
        default=0.05,
        ge=0.0,
        description="Relative tolerance under which policy shipping is treated as already counted",
    )
    shipping_dedup_tolerance_abs: float = Field(
        default=1.0,
        ge=0.0,
        description="Absolute tolerance (currency units) for shipping deduplication",
    )

    # KPI policy
    new_customer_source: NewCustomerSource = Field(
        default=NewCustomerSource.BREAKDOWN,
        description="Signal used to count new customers (breakdown|derived)",
    )
    prefer_ad_insight_spend: bool = Field(
        default=True,
        description="Use ad-platform spend for overview marketing cost when it is reported",
    )

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Restrict log format to the two supported renderers."""
        normalized = v.strip().lower()
        if normalized not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {v!r}")
        return normalized


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()

"""
Settings
Runtime configuration, read from MONITOR_* environment variables or .env.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Storage
    db_path: str = "data/monitor.db"

    # Scheduler
    tick_interval_seconds: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=4, ge=1)
    autostart_scheduler: bool = True
    evaluation_retention_days: int = Field(default=0, ge=0)

    # Minimum spacing between alerts of one rule; 0 = none
    alert_cooldown_seconds: float = Field(default=0.0, ge=0)

    # Metrics provider
    metrics_base_url: Optional[str] = None
    # "metrics": service computes them; "holdings": computed here from priced holdings
    metrics_source: Literal["metrics", "holdings"] = "metrics"
    metrics_timeout_seconds: float = Field(default=10.0, gt=0)

    # Text-generation oracle
    anthropic_api_key: Optional[str] = None
    oracle_model: str = "claude-sonnet-4-20250514"
    oracle_timeout_seconds: float = Field(default=20.0, gt=0)
    oracle_max_tokens: int = 1024

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get singleton settings instance"""
    return Settings()

"""Application settings powered by Pydantic BaseSettings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.fetch.config import CircuitBreakerConfig, FetchConfig
from src.fetch.constants import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_CAP_MS,
    DEFAULT_USER_AGENT,
)
from src.fetch.models import RetryPolicy
from src.ingestion.constants import ESI_BASE_URL, JITA_SYSTEM_ID, THE_FORGE_REGION_ID
from src.ingestion.models import OrderSelector
from src.scheduler.scheduler import SchedulerConfig


class AppSettings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, env_file=".env", env_file_encoding="utf-8"
    )

    sqlite_db_path: str = Field(
        default="data/ingestion.sqlite", validation_alias="SQLITE_DB_PATH"
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT, validation_alias="USER_AGENT")
    esi_base_url: str = Field(default=ESI_BASE_URL, validation_alias="ESI_BASE_URL")
    esi_max_retries: int = Field(default=3, ge=0, validation_alias="ESI_MAX_RETRIES")
    esi_backoff_base_ms: int = Field(
        default=DEFAULT_BACKOFF_BASE_MS, ge=0, validation_alias="ESI_BACKOFF_BASE_MS"
    )
    esi_backoff_cap_ms: int = Field(
        default=DEFAULT_BACKOFF_CAP_MS, ge=0, validation_alias="ESI_BACKOFF_CAP_MS"
    )
    esi_timeout_seconds: float = Field(
        default=30.0, gt=0, validation_alias="ESI_TIMEOUT_SECONDS"
    )
    esi_circuit_failure_threshold: int = Field(
        default=5, ge=1, validation_alias="ESI_CIRCUIT_FAILURE_THRESHOLD"
    )
    esi_circuit_min_open_ms: int = Field(
        default=30_000, ge=0, validation_alias="ESI_CIRCUIT_MIN_OPEN_MS"
    )
    market_snapshot_interval_ms: int = Field(
        default=300_000, ge=0, validation_alias="MARKET_SNAPSHOT_INTERVAL_MS"
    )
    market_snapshot_stale_ms: int = Field(
        default=300_000, ge=0, validation_alias="MARKET_SNAPSHOT_STALE_MS"
    )
    market_region_id: int = Field(
        default=THE_FORGE_REGION_ID, gt=0, validation_alias="MARKET_REGION_ID"
    )
    market_system_id: int | None = Field(
        default=JITA_SYSTEM_ID, validation_alias="MARKET_SYSTEM_ID"
    )
    market_max_pages: int | None = Field(
        default=None, ge=1, validation_alias="MARKET_MAX_PAGES"
    )
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")

    def to_fetch_config(self, endpoint: str = "esi") -> FetchConfig:
        """Build the fetcher configuration for one endpoint."""
        return FetchConfig(
            endpoint=endpoint,
            user_agent=self.user_agent,
            timeout_seconds=self.esi_timeout_seconds,
            retry_policy=RetryPolicy(
                max_retries=self.esi_max_retries,
                base_delay_ms=self.esi_backoff_base_ms,
                max_delay_ms=self.esi_backoff_cap_ms,
            ),
            breaker=CircuitBreakerConfig(
                failure_threshold=self.esi_circuit_failure_threshold,
                min_open_duration_ms=self.esi_circuit_min_open_ms,
            ),
        )

    def to_scheduler_config(self) -> SchedulerConfig:
        """Build the scheduler configuration."""
        return SchedulerConfig(
            interval_ms=self.market_snapshot_interval_ms,
            stale_after_ms=self.market_snapshot_stale_ms,
            max_pages=self.market_max_pages,
        )

    def to_selector(self) -> OrderSelector:
        """Build the selector of the configured market."""
        return OrderSelector(
            region_id=self.market_region_id,
            system_id=self.market_system_id or None,
        )


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()

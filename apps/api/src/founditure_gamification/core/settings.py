from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./founditure.db"
    database_echo: bool = False

    # Logging
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True

    # Tracing
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None

    # Internal API security
    admin_api_key: str = ""

    # Ledger store
    ledger_store_timeout_seconds: float = Field(default=5.0, gt=0)

    # Points and levels
    points_level_multiplier: int = Field(default=100, ge=1)
    points_max_level: int = Field(default=100, ge=1)
    points_large_transaction_threshold: int = Field(default=1000, ge=1)
    points_history_default_page_size: int = Field(default=20, ge=1)
    points_history_max_page_size: int = Field(default=100, ge=1)

    # Points reconciliation worker
    points_reconciliation_worker_enabled: bool = False
    points_reconciliation_interval_seconds: int = 60 * 60
    points_reconciliation_batch_size: int = 500

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        # Hosted PostgreSQL providers hand out sync URLs; the engine is async-only.
        if isinstance(value, str) and value.startswith("postgresql://"):
            return value.replace("postgresql://", "postgresql+asyncpg://", 1)
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()

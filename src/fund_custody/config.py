"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup - if a required setting is missing, the app fails fast with a
clear error message.

Usage:
    from fund_custody.config import get_settings
    settings = get_settings()
    print(settings.rail_timeout_seconds)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the fund custody service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://custody:custody_dev"
        "@localhost:5432/fund_custody"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    event_channel: str = "custody.events"

    # --- Release execution ---
    rail_timeout_seconds: float = 30.0
    release_pacing_seconds: float = 0.1  # min gap between batch/sweep items
    batch_release_max: int = 100
    held_list_default_limit: int = 100
    held_list_max_limit: int = 1000

    # --- Processor transfer rail ---
    processor_username: str = ""
    processor_password: str = ""
    processor_api_version: str = "2022-02-01"
    processor_environment: Literal["sandbox", "production"] = "sandbox"
    processor_base_url: str = ""

    # --- Banking network rail ---
    banking_client_id: str = ""
    banking_secret: str = ""
    banking_environment: Literal["sandbox", "production"] = "sandbox"

    # --- Manual batch file rail ---
    batch_file_link_ttl_seconds: int = 300  # download link validity

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()

"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Dashboard configuration loaded from environment variables with PDASH_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="PDASH_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Record store ---
    record_api_base_url: str = "http://localhost:3000"
    request_timeout_seconds: float = 10.0
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    # Per-resource staleness overrides in seconds, e.g. {"teams": 60}
    staleness_overrides: dict[str, int] = {}

    # --- View composition ---
    fallback_milestones_enabled: bool = True
    prefetch_submissions: bool = True
    prefetch_batch_size: int = 2
    prefetch_batch_delay_seconds: float = 0.5
    prefetch_initial_delay_seconds: float = 1.0

    # --- Sessions ---
    session_cookie_name: str = "appSession"
    session_idle_seconds: int = 3600
    notification_buffer_size: int = 50


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()

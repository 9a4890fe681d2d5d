"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables with WIKIRACE_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="WIKIRACE_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    redis_url: str = "redis://localhost:6379/0"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    rate_limit_requests: int = 300
    rate_limit_window_seconds: int = 60
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Content source ---
    data_source_url: str = (
        "https://raw.githubusercontent.com/andersonaleixo531-hub/"
        "wiki---game---urls/refs/heads/main/Uurls.json"
    )
    data_source_timeout_seconds: float = 10.0

    # --- Rooms ---
    min_plausible_time_ms: int = 1000
    store_max_retries: int = 25
    heartbeat_interval_seconds: float = 5.0
    progress_debounce_seconds: float = 1.5

    # --- Reaper ---
    reaper_enabled: bool = True
    reaper_interval_seconds: float = 15.0
    room_inactivity_timeout_seconds: int = 300  # 5 minutes

    # --- Rankings ---
    rankings_default_limit: int = 30

    # --- WebSocket ---
    ws_poll_timeout_seconds: float = 1.0


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()

"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Sanitas Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Control API ---
    api_token: str = ""  # bearer token for /api/v1 routes; open when empty

    # --- State ---
    state_path: str = "~/.sanitas-sync/state.json"  # credentials + sync cursor
    database_url: str = ""  # optional postgres DSN; in-memory health store when empty

    # --- Phone identity reported to the vendor ---
    device_os_version: str = "14"
    device_model: str = "Pixel 7"
    device_name: str = "Pixel 7"
    device_brand: str = "Google"
    device_timezone: str = "UTC"
    app_culture: str = "fr-FR"

    # --- Sync ---
    scheduler_enabled: bool = True
    sync_interval_minutes: int = 15
    sync_timeout_seconds: float = 25.0  # wall-clock budget for one run
    http_timeout_seconds: float = 15.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()

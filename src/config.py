"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Variables use the ``HEALTHSYNC_`` prefix, e.g. ``HEALTHSYNC_API_URL``.
    """

    # --- App ---
    app_name: str = "HealthSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production
    autostart_scheduler: bool = True

    # --- Identity ---
    user_id: str
    device_id: str

    # --- Delivery endpoint ---
    api_url: str = "https://healthsync.darqlab.net/health/hook"
    api_token: str  # static credential, never derived at runtime
    api_token_header: str = "Authorization"  # any other header carries the raw token
    http_timeout_seconds: float = 30.0

    # --- Health data store bridge ---
    store_base_url: str = "http://127.0.0.1:8765"
    store_token: str = ""

    # --- Control API ---
    control_token: str = ""  # empty disables the bearer check on /api/v1/sync routes

    # --- Scheduling ---
    timezone: str = "UTC"  # IANA name; "today" starts at local midnight here
    sync_interval_seconds: int = 3600
    retry_backoff_seconds: int = 900
    connectivity_poll_seconds: int = 30

    # --- Sync state persistence ---
    state_backend: str = "file"  # file | postgres
    state_path: str = "var/sync_state.json"
    database_url: str = ""  # postgres connection string for asyncpg

    # --- Event log ---
    event_log_size: int = 50

    model_config = {
        "env_prefix": "HEALTHSYNC_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]

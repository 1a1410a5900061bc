"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore", # Allow extra env vars without failing
    )

    # App
    app_name: str = "SafeCircle"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    tracing_enabled: bool = False

    # Token validation. Tokens are minted by the external identity provider,
    # SECRET_KEY must match its signing key (e.g. SECRET_KEY in .env)
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # API
    api_prefix: str = "/api/v1"
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Database
    database_url: str = "sqlite+aiosqlite:///./safecircle.db"
    db_ssl_mode: str = "disable" # "require" for production
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Real-time fan-out (SSE)
    event_bus_queue_size: int = 1000
    sse_heartbeat_interval_seconds: int = 30
    sse_max_idle_seconds: int = 300
    sse_max_connections: int = 200

    # SLA engine
    sla_sweep_enabled: bool = True
    sla_sweep_interval_seconds: int = 180
    sla_defaults_path: Optional[str] = None  # Falls back to backend/app/policies/sla_defaults.yaml
    business_timezone: str = "UTC"

    # Live locations
    live_location_stale_after_seconds: int = 300
    family_locations_window_hours: int = 6

    # Geofenced places
    place_detection_enabled: bool = True
    place_default_radius_m: int = 150

    # Location reporter defaults (client library)
    reporter_fallback_interval_seconds: float = 15.0
    reporter_initial_fix_timeout_seconds: float = 10.0
    reporter_initial_fix_max_age_seconds: float = 30.0
    reporter_watch_timeout_seconds: float = 30.0
    reporter_success_debounce_seconds: float = 2.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Daily Ritual"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production
    api_base_url: str = "http://localhost:8000"
    mobile_deep_link_scheme: str = "dailyritual"

    # --- Storage ---
    # "memory" swaps in the in-process store for local runs and tests
    store_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str = ""  # direct postgres connection string for asyncpg

    # --- Supabase auth ---
    supabase_url: str = ""
    supabase_jwt_secret: str  # HS256 secret used to verify bearer tokens
    supabase_jwt_audience: str = "authenticated"

    # --- OAuth state ---
    oauth_state_secret: str
    oauth_state_ttl_seconds: int = 600

    # --- Whoop ---
    whoop_client_id: str = ""
    whoop_client_secret: str = ""
    whoop_redirect_uri: str = ""
    whoop_webhook_secret: str = ""  # empty disables signature verification

    # --- Strava ---
    strava_client_id: str = ""
    strava_client_secret: str = ""
    strava_redirect_uri: str = ""
    strava_webhook_secret: str = ""
    strava_webhook_verify_token: str = ""

    # Providers to build adapters for; env value is a JSON list
    enabled_providers: list[str] = ["whoop", "strava"]

    # --- Sync ---
    provider_timeout_seconds: float = 10.0
    webhook_ack_timeout_seconds: float = 5.0
    # Reject deliveries without a signature header even when a secret is set.
    # Off by default: unsigned deliveries are accepted and logged at WARNING.
    webhook_require_signature: bool = False
    default_sync_days: int = 7

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @model_validator(mode="after")
    def _check_production(self) -> "Settings":
        if self.environment == "production":
            if self.store_backend == "memory":
                raise ValueError("store_backend=memory is not allowed in production")
            if not self.database_url:
                raise ValueError("database_url is required in production")
        return self

    def provider_credentials(self, provider: str) -> tuple[str, str]:
        return (
            getattr(self, f"{provider}_client_id", ""),
            getattr(self, f"{provider}_client_secret", ""),
        )

    def webhook_secret(self, provider: str) -> str:
        return getattr(self, f"{provider}_webhook_secret", "")

    def redirect_uri(self, provider: str) -> str:
        override = getattr(self, f"{provider}_redirect_uri", "")
        return override or (
            f"{self.api_base_url.rstrip('/')}/api/v1/integrations/{provider}/callback"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]

"""Centralized settings for the Schwab gateway.

Uses pydantic-settings to load from environment variables (prefixed SCHWAB_)
with defaults matching GatewayConfig.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    # --- Credentials ---
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    account_number: str = ""

    # --- Endpoints ---
    data_url: str = "https://api.schwabapi.com"
    stream_url: str = "wss://streamer-api.schwab.com/ws"

    # --- Scheduling ---
    token_refresh_interval: float = 60.0
    request_timeout: float = 30.0

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = {
        "env_prefix": "SCHWAB_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()

"""Centralized settings for the building alert service.

Uses pydantic-settings to load from environment variables (prefixed
BUILDING_ALERTS_) with defaults suitable for local development.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Building alert settings loaded from environment variables."""

    # --- Notifications ---
    dashboard_url: str = "https://app.example.com/dashboard"
    channel_timeout_seconds: float = 10.0
    delivery_workers: int = 8
    evaluation_workers: int = 1  # 1 = evaluate configurations sequentially

    # --- SMTP ---
    smtp_host: str = ""  # empty = dry run
    smtp_port: int = 587
    smtp_use_tls: bool = True
    smtp_username: str = ""
    smtp_password: str = ""
    email_from_address: str = "alerts@example.com"
    email_from_name: str = "Building Alerts"

    # --- Twilio ---
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    # --- Webhooks ---
    webhook_signing_secret: str = ""

    # --- Evaluation ---
    default_timezone: str = "UTC"
    subscription_tier: str = "professional"

    model_config = {
        "env_prefix": "BUILDING_ALERTS_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()

# offer_tracker/core/config.py

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # SQS notification queue
    SQS_QUEUE_URL: str = ""
    SQS_REGION: str = "us-east-1"
    SQS_ACCESS_KEY_ID: str = ""
    SQS_SECRET_ACCESS_KEY: str = ""
    QUEUE_MAX_MESSAGES: int = 1
    QUEUE_WAIT_SECONDS: int = 0

    # Poller
    POLL_ENABLED: bool = False
    POLL_INTERVAL_SECONDS: int = 5

    # Only notifications for this marketplace are reconciled (US by default)
    DESIGNATED_MARKETPLACE_ID: str = "ATVPDKIKX0DER"

    # Selling partner pricing API (listing resolution)
    PRICING_API_BASE_URL: str = "https://sellingpartnerapi-na.amazon.com"
    PRICING_API_ACCESS_TOKEN: str = ""
    LISTING_RESOLVER_DELAY_SECONDS: float = 2.0  # getPricing allows 0.5 requests / second

    # Reports API (report documents)
    REPORTS_API_BASE_URL: str = "https://sellingpartnerapi-na.amazon.com"
    REPORTS_DIR: str = "reports"  # downloaded report documents

    # PRICING_HEALTH condition filter, off to match upstream behaviour
    PRICING_HEALTH_ENFORCE_CONDITION: bool = False

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: Optional[str] = None

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()

def get_settings_no_cache():
    """Get settings without caching - useful for testing different environments"""
    return Settings()

def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()

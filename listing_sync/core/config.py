# listing_sync/core/config.py

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

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Staleness pass policy
    SYNC_STALE_AFTER_MINUTES: int = 60
    SYNC_MAX_CONCURRENT: int = 4           # Small pool, marketplaces rate-limit aggressively
    SYNC_ADAPTER_TIMEOUT_SECONDS: float = 20.0
    SYNC_BATCH_DEADLINE_SECONDS: Optional[float] = None
    SYNC_BATCH_LIMIT: Optional[int] = None

    # Scheduler
    SYNC_SCHEDULE: str = "*/30 * * * *"
    SYNC_SCHEDULE_ENABLED: bool = False
    SYNC_QUEUE_POLL_SECONDS: int = 15

    # Queue retry policy (transport level)
    SYNC_JOB_MAX_ATTEMPTS: int = 3
    SYNC_JOB_RETRY_BASE_SECONDS: int = 30
    # In-progress jobs claimed longer ago than this belong to a dead worker
    SYNC_JOB_STALE_CLAIM_MINUTES: int = 30

    # Token expiration monitor
    TOKEN_MONITOR_ENABLED: bool = True
    TOKEN_MONITOR_INTERVAL_MINUTES: int = 60
    TOKEN_REFRESH_WINDOW_HOURS: int = 1

    # Token encryption at rest: comma separated Fernet keys, newest first.
    # Only the first key encrypts; the rest still decrypt during rotation.
    TOKEN_ENCRYPTION_KEYS: str = ""

    # eBay API
    EBAY_CLIENT_ID: str = ""
    EBAY_CLIENT_SECRET: str = ""
    EBAY_SANDBOX_MODE: bool = False  # Change to True if in Sandbox test mode
    EBAY_SITE_ID: str = "0"          # 0 = US
    EBAY_COMPATIBILITY_LEVEL: str = "1155"
    EBAY_WEBHOOK_SECRET: str = ""        # HMAC key behind x-ebay-signature
    EBAY_VERIFICATION_TOKEN: str = ""    # Subscription challenge
    EBAY_WEBHOOK_ENDPOINT: str = ""

    # Amazon Selling Partner API
    AMAZON_CLIENT_ID: str = ""
    AMAZON_CLIENT_SECRET: str = ""
    AMAZON_MARKETPLACE_ID: str = "ATVPDKIKX0DER"  # US marketplace
    AMAZON_REGION: str = "NA"

    # Facebook Graph API
    FACEBOOK_GRAPH_VERSION: str = "v19.0"
    FACEBOOK_APP_SECRET: str = ""
    FACEBOOK_VERIFY_TOKEN: str = ""

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )

@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()

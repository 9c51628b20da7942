"""
Application Configuration using Pydantic Settings

Type-safe environment variable loading with validation
"""

from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables

    Automatically loads from:
    1. Environment variables
    2. .env file (if present)
    3. Default values (specified below)

    Usage:
        from whale_monitor.core.config import settings

        threshold = settings.DEFAULT_ALERT_THRESHOLD
        is_production = settings.ENVIRONMENT == "production"
    """

    # Application Settings
    ENVIRONMENT: str = "development"

    # Admin Authentication (REQUIRED, no default)
    ADMIN_TOKEN: str

    # Database Settings
    DATABASE_URL: str = "sqlite:///./whale_monitor.db"
    TEST_DATABASE_URL: str = "sqlite:///./test_whale_monitor.db"

    # CORS Settings (default: admin UI dev server)
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"

    # Scheduling
    MONITOR_ENABLED: bool = True
    MONITOR_CHECK_INTERVAL_SECONDS: int = 60
    MONITOR_MAX_CONCURRENCY: int = 3
    MONITOR_STOP_TIMEOUT_SECONDS: int = 30  # grace period for the running batch on stop
    MONITOR_DISPATCH_AFTER_SCAN: bool = True
    MONITOR_BACKFILL_ON_FIRST_SCAN: bool = False
    MONITOR_SEED_REGISTRY: bool = True  # onboard registry wallets at startup

    # Alert thresholds (XRP)
    DEFAULT_ALERT_THRESHOLD: Decimal = Decimal("10000")
    EXCHANGE_ALERT_THRESHOLD: Decimal = Decimal("50000")
    CRITICAL_WHALE_THRESHOLD: Decimal = Decimal("1000000")

    # Telegram Bot (optional at startup; dispatch fails with ConfigurationMissing)
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    TELEGRAM_WEBHOOK_SECRET: Optional[str] = None

    # Per-tier channel ids
    TELEGRAM_CHANNEL_CRITICAL_WHALES: Optional[str] = None
    TELEGRAM_CHANNEL_EXCHANGE_DEPOSITS: Optional[str] = None
    TELEGRAM_CHANNEL_WHALE_MOVEMENTS: Optional[str] = None
    TELEGRAM_CHANNEL_SYSTEM_ALERTS: Optional[str] = None

    # Dispatch retry policy (bounded exponential backoff)
    DISPATCH_RETRY_ATTEMPTS: int = 3
    DISPATCH_RETRY_BASE_DELAY_SECONDS: float = 1.0
    DISPATCH_RETRY_MAX_DELAY_SECONDS: float = 30.0
    DISPATCH_BATCH_LIMIT: int = 50
    DISPATCH_FANOUT_INCLUDE_LOWER_TIERS: bool = False
    DISPATCH_TEST_MODE: bool = False

    # Pydantic Settings Configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra env vars not defined here
    )

    # Properties for easier access

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT == "production"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list"""
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def use_json_logs(self) -> bool:
        """Check if JSON logging is enabled"""
        return self.LOG_FORMAT == "json"

    @property
    def telegram_channels(self) -> Dict[str, Optional[str]]:
        """Channel id per alert tier"""
        return {
            "critical_whales": self.TELEGRAM_CHANNEL_CRITICAL_WHALES,
            "exchange_deposits": self.TELEGRAM_CHANNEL_EXCHANGE_DEPOSITS,
            "whale_movements": self.TELEGRAM_CHANNEL_WHALE_MOVEMENTS,
            "system_alerts": self.TELEGRAM_CHANNEL_SYSTEM_ALERTS,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()


# Validation: Fail fast if unsafe values in production
if settings.is_production:
    if settings.DATABASE_URL.startswith("sqlite"):
        raise ValueError("SQLite is not allowed in production. Set DATABASE_URL to PostgreSQL.")

    if settings.ALLOWED_ORIGINS == "*":
        raise ValueError("CORS wildcard '*' is not allowed in production. Set ALLOWED_ORIGINS to specific domains.")

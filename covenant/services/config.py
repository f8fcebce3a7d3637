"""Engine configuration from environment variables and .env file."""

import logging
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class EngineSettings(BaseSettings):
    """Engine configuration loaded from environment variables.

    Pydantic automatically loads values from:
    1. OS environment variables (at instantiation time)
    2. .env file (if present)
    """

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Allow extra fields in .env file
    )

    database_url: str = "sqlite+aiosqlite:///./covenant.db"

    # Billing
    base_rate_per_sqft: Decimal = Decimal("0.05")

    # Overdue sweep cadence (hourly by default)
    sweep_interval_seconds: float = 3600.0

    # Store access
    store_timeout_seconds: float = 10.0
    store_retry_attempts: int = 3
    store_retry_base_delay: float = 0.2

    # Notifications
    from_email: str = ""

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/covenant.log"

    @field_validator("sweep_interval_seconds", "store_timeout_seconds")
    @classmethod
    def _positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("store_retry_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("base_rate_per_sqft")
    @classmethod
    def _non_negative_rate(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("must not be negative")
        return value


# Lazy loader to ensure environment is loaded before instantiation
_settings_instance: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get or create the settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = EngineSettings()
        logger.debug("Loaded engine settings (database=%s)", _settings_instance.database_url)
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings_instance
    _settings_instance = None


__all__ = ["EngineSettings", "get_settings", "reset_settings"]

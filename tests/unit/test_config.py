"""Unit tests for engine settings loading."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from covenant.services.config import EngineSettings, get_settings, reset_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.mark.unit
class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self, monkeypatch):
        """Test defaults when no environment overrides are present."""
        for name in ("DATABASE_URL", "BASE_RATE_PER_SQFT", "SWEEP_INTERVAL_SECONDS", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        settings = EngineSettings(_env_file=None)

        assert settings.database_url == "sqlite+aiosqlite:///./covenant.db"
        assert settings.base_rate_per_sqft == Decimal("0.05")
        assert settings.sweep_interval_seconds == 3600
        assert settings.store_retry_attempts == 3
        assert settings.log_file == "logs/covenant.log"

    def test_environment_overrides(self, monkeypatch):
        """Test values are read from environment variables (case-insensitive)."""
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        monkeypatch.setenv("base_rate_per_sqft", "0.07")
        monkeypatch.setenv("SWEEP_INTERVAL_SECONDS", "60")

        settings = EngineSettings(_env_file=None)

        assert settings.database_url == "sqlite+aiosqlite:///:memory:"
        assert settings.base_rate_per_sqft == Decimal("0.07")
        assert settings.sweep_interval_seconds == 60

    def test_env_file(self, monkeypatch, tmp_path):
        """Test values are read from a .env file."""
        monkeypatch.delenv("FROM_EMAIL", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("FROM_EMAIL=board@example.com\nUNRELATED=1\n")

        settings = EngineSettings(_env_file=str(env_file))

        assert settings.from_email == "board@example.com"

    @pytest.mark.parametrize(
        "field, value",
        [
            ("sweep_interval_seconds", 0),
            ("store_timeout_seconds", -1),
            ("store_retry_attempts", 0),
            ("base_rate_per_sqft", "-0.01"),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        """Test invalid values raise ValidationError."""
        with pytest.raises(ValidationError):
            EngineSettings(_env_file=None, **{field: value})


@pytest.mark.unit
def test_get_settings_is_cached_until_reset(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    first = get_settings()
    assert get_settings() is first
    assert first.log_level == "DEBUG"

    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    reset_settings()
    assert get_settings().log_level == "WARNING"

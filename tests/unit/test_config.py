"""Unit tests for settings."""

import pytest
from pydantic import ValidationError

from fleet_compliance.core.config import Settings, get_settings
from fleet_compliance.models.compliance import ComplianceDomain


class TestSettings:
    """Test settings defaults and validation."""

    def test_defaults(self) -> None:
        """Test the documented defaults."""
        settings = Settings()

        assert settings.timezone == "Asia/Manila"
        assert settings.cache_enabled is False
        assert settings.coding_repeat_offense_threshold == 2
        assert settings.coding_repeat_offense_window_days == 30
        assert settings.violation_payment_days == 7
        assert settings.compliance_check_timeout_seconds == 10.0
        assert settings.bulk_sync_concurrency == 8
        assert not settings.is_production

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test FLEET_ prefixed environment variables are read."""
        monkeypatch.setenv("FLEET_BULK_SYNC_CONCURRENCY", "3")
        monkeypatch.setenv("FLEET_CACHE_ENABLED", "true")

        settings = Settings()

        assert settings.bulk_sync_concurrency == 3
        assert settings.cache_enabled is True

    def test_settings_are_frozen(self) -> None:
        """Test settings cannot be mutated."""
        settings = Settings()

        with pytest.raises(ValidationError):
            settings.timezone = "UTC"  # type: ignore[misc]

    def test_unknown_timezone_rejected(self) -> None:
        """Test an unknown timezone name fails validation."""
        with pytest.raises(ValidationError, match="Unknown timezone"):
            Settings(timezone="Mars/Olympus_Mons")

    def test_critical_above_warning_rejected(self) -> None:
        """Test critical days may not exceed warning days."""
        with pytest.raises(ValidationError, match="franchise_critical_days"):
            Settings(franchise_warning_days=5, franchise_critical_days=10)

    def test_test_keys_rejected_in_production(self) -> None:
        """Test test- API keys are refused in production."""
        with pytest.raises(ValidationError, match="Test key cannot be used"):
            Settings(environment="production", ltfrb_api_key="test-abc")

    def test_domain_thresholds(self) -> None:
        """Test thresholds are built for every domain."""
        thresholds = Settings(insurance_warning_days=40).domain_thresholds()

        assert set(thresholds) == set(ComplianceDomain)
        assert thresholds[ComplianceDomain.INSURANCE].warning_days == 40
        assert thresholds[ComplianceDomain.FRANCHISE].critical_days == 7

    def test_get_settings_is_cached(self) -> None:
        """Test the settings singleton."""
        assert get_settings() is get_settings()

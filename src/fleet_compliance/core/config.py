# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Configuration management using Pydantic Settings."""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from beartype import beartype
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models.compliance import ComplianceDomain, DomainThresholds


class Settings(BaseSettings):
    """Application settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_prefix="FLEET_",
        frozen=True,
        validate_default=True,
        extra="forbid",
    )

    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Deployment environment",
    )
    timezone: str = Field(
        default="Asia/Manila",
        min_length=1,
        description="Local timezone for coding hours and holidays",
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
        min_length=1,
    )
    redis_ttl_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Default Redis TTL in seconds",
    )
    cache_enabled: bool = Field(
        default=False,
        description="Use the Redis read-through cache for rules and verifications",
    )

    # Domain thresholds (days before expiry)
    franchise_warning_days: int = Field(default=60, ge=1, le=365)
    franchise_critical_days: int = Field(default=7, ge=0, le=365)
    registration_warning_days: int = Field(default=60, ge=1, le=365)
    registration_critical_days: int = Field(default=7, ge=0, le=365)
    insurance_warning_days: int = Field(default=45, ge=1, le=365)
    insurance_critical_days: int = Field(default=7, ge=0, le=365)
    environmental_warning_days: int = Field(default=30, ge=1, le=365)
    environmental_critical_days: int = Field(default=7, ge=0, le=365)

    # Scheduler
    scheduler_tick_seconds: float = Field(
        default=3600.0,
        ge=1.0,
        le=86400.0,
        description="Interval between scheduler ticks",
    )
    scheduler_max_concurrency: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum rules evaluated concurrently within a tick",
    )

    # Number coding
    coding_rule_cache_ttl_seconds: int = Field(default=300, ge=1, le=86400)
    coding_repeat_offense_window_days: int = Field(default=30, ge=1, le=365)
    coding_repeat_offense_threshold: int = Field(
        default=2,
        ge=1,
        le=100,
        description="Prior violations inside the window that trigger the repeat fine",
    )
    violation_payment_days: int = Field(default=7, ge=1, le=365)

    # Government gateway
    gateway_timeout_seconds: float = Field(default=30.0, ge=0.1, le=300.0)
    gateway_max_rate_limit_wait_seconds: float = Field(default=5.0, ge=0.0, le=120.0)
    gateway_down_cooldown_seconds: float = Field(
        default=60.0,
        ge=0.0,
        le=3600.0,
        description="Seconds a down agency is skipped before a trial call",
    )
    ltfrb_api_base_url: str = Field(default="https://api.ltfrb.gov.ph/v1")
    ltfrb_api_key: str | None = Field(default=None)
    ltfrb_requests_per_minute: int = Field(default=60, ge=1, le=10000)
    lto_api_base_url: str = Field(default="https://api.lto.gov.ph/v1")
    lto_api_key: str | None = Field(default=None)
    lto_requests_per_minute: int = Field(default=120, ge=1, le=10000)
    insurance_api_base_url: str = Field(default="https://api.insurance.gov.ph/v1")
    insurance_api_key: str | None = Field(default=None)
    insurance_requests_per_minute: int = Field(default=30, ge=1, le=10000)
    mmda_api_base_url: str = Field(default="https://api.mmda.gov.ph/v1")
    mmda_api_key: str | None = Field(default=None)
    mmda_requests_per_minute: int = Field(default=100, ge=1, le=10000)

    # Compliance checks
    compliance_check_timeout_seconds: float = Field(default=10.0, ge=0.1, le=120.0)
    verification_cache_ttl_seconds: int = Field(default=900, ge=1, le=86400)
    bulk_sync_concurrency: int = Field(default=8, ge=1, le=128)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls: type["Settings"], v: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator(
        "franchise_critical_days",
        "registration_critical_days",
        "insurance_critical_days",
        "environmental_critical_days",
    )
    @classmethod
    def validate_critical_below_warning(
        cls: type["Settings"], v: int, info: ValidationInfo
    ) -> int:
        """Critical threshold must not exceed the warning threshold."""
        warning_field = info.field_name.replace("critical", "warning")
        warning = info.data.get(warning_field)
        if warning is not None and v > warning:
            raise ValueError(
                f"{info.field_name} ({v}) must be <= {warning_field} ({warning})"
            )
        return v

    @field_validator(
        "ltfrb_api_key", "lto_api_key", "insurance_api_key", "mmda_api_key"
    )
    @classmethod
    def validate_api_keys(
        cls: type["Settings"], v: str | None, info: ValidationInfo
    ) -> str | None:
        """Ensure test keys are not used in production."""
        if info.data.get("environment") == "production" and v and v.startswith("test-"):
            raise ValueError(
                f"Test key cannot be used in production for {info.field_name}"
            )
        return v

    @property
    @beartype
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    @beartype
    def zone(self) -> ZoneInfo:
        """Local timezone object."""
        return ZoneInfo(self.timezone)

    @beartype
    def domain_thresholds(self) -> dict[ComplianceDomain, DomainThresholds]:
        """Warning/critical day thresholds keyed by domain."""
        return {
            domain: DomainThresholds(
                warning_days=getattr(self, f"{domain.value}_warning_days"),
                critical_days=getattr(self, f"{domain.value}_critical_days"),
            )
            for domain in ComplianceDomain
        }


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None

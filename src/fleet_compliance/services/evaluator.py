"""Compliance state evaluation.

One evaluator serves every domain; the domains differ only in the
:class:`DomainThresholds` passed in.
"""

import math
from datetime import datetime, timedelta

from beartype import beartype

from ..core.config import Settings
from ..models.compliance import (
    ComplianceDomain,
    ComplianceRecord,
    ComplianceStatus,
    DomainThresholds,
)

_ONE_DAY = timedelta(days=1)


@beartype
def days_until_expiry(expiry_date: datetime, now: datetime) -> int:
    """Whole days until expiry, rounded up; negative once expired."""
    return math.ceil((expiry_date - now) / _ONE_DAY)


@beartype
def evaluate(
    record: ComplianceRecord, now: datetime, thresholds: DomainThresholds
) -> ComplianceStatus:
    """Compute the compliance status of ``record`` at ``now``.

    Suspension overrides everything. Otherwise the status follows the days
    remaining: negative is expired, within the warning threshold is
    expiring soon, anything further out is compliant.
    """
    if record.suspended:
        return ComplianceStatus.SUSPENDED

    days = days_until_expiry(record.expiry_date, now)
    if days < 0:
        return ComplianceStatus.EXPIRED
    if days <= thresholds.warning_days:
        return ComplianceStatus.EXPIRING_SOON
    return ComplianceStatus.COMPLIANT


@beartype
def is_critical(days: int, thresholds: DomainThresholds) -> bool:
    """Within the critical window or already expired."""
    return days <= thresholds.critical_days


@beartype
def thresholds_for(domain: ComplianceDomain, settings: Settings) -> DomainThresholds:
    """Configured thresholds for ``domain``."""
    return settings.domain_thresholds()[domain]

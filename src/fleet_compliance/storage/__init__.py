"""Repository interfaces and in-memory implementations."""

from .base import (
    AlertRepository,
    CodingRuleRepository,
    ComplianceRecordRepository,
    ExemptionRepository,
    MonitoringRuleRepository,
    ViolationRepository,
)
from .memory import (
    InMemoryAlertRepository,
    InMemoryCodingRuleRepository,
    InMemoryComplianceRecordRepository,
    InMemoryExemptionRepository,
    InMemoryMonitoringRuleRepository,
    InMemoryViolationRepository,
)

__all__ = [
    "AlertRepository",
    "CodingRuleRepository",
    "ComplianceRecordRepository",
    "ExemptionRepository",
    "MonitoringRuleRepository",
    "ViolationRepository",
    "InMemoryAlertRepository",
    "InMemoryCodingRuleRepository",
    "InMemoryComplianceRecordRepository",
    "InMemoryExemptionRepository",
    "InMemoryMonitoringRuleRepository",
    "InMemoryViolationRepository",
]

"""Domain models package for the fleet compliance engine.

This package exports all Pydantic domain models with strict validation
and immutability.
"""

from .base import BaseModelConfig, VersionedModel
from .coding import (
    CodingHours,
    CodingRule,
    ExemptionRequest,
    ExemptionStatus,
    ExemptionType,
    GeoPoint,
    Polygon,
    Weekday,
)
from .compliance import (
    ComplianceDomain,
    ComplianceRecord,
    ComplianceStatus,
    DomainThresholds,
    EntityKind,
    OwnershipType,
    Region,
    ServiceType,
)
from .monitoring import (
    Alert,
    AlertPriority,
    AlertStatus,
    ApiCall,
    Applicability,
    CheckFrequency,
    DisableVehicle,
    EmailNotification,
    EscalationAction,
    EscalationLevel,
    FiredEscalation,
    GenerateReport,
    GovernmentAgency,
    InAppNotification,
    MonitoringRule,
    RecipientRole,
    SmsAlert,
    SuspendDriver,
)
from .violation import (
    CodingViolation,
    ContestDecision,
    DetectionMethod,
    Violation,
    ViolationDomain,
    ViolationStatus,
)

__all__ = [
    # Base models
    "BaseModelConfig",
    "VersionedModel",
    # Compliance records
    "ComplianceDomain",
    "ComplianceRecord",
    "ComplianceStatus",
    "DomainThresholds",
    "EntityKind",
    "OwnershipType",
    "Region",
    "ServiceType",
    # Monitoring
    "Alert",
    "AlertPriority",
    "AlertStatus",
    "ApiCall",
    "Applicability",
    "CheckFrequency",
    "DisableVehicle",
    "EmailNotification",
    "EscalationAction",
    "EscalationLevel",
    "FiredEscalation",
    "GenerateReport",
    "GovernmentAgency",
    "InAppNotification",
    "MonitoringRule",
    "RecipientRole",
    "SmsAlert",
    "SuspendDriver",
    # Coding
    "CodingHours",
    "CodingRule",
    "ExemptionRequest",
    "ExemptionStatus",
    "ExemptionType",
    "GeoPoint",
    "Polygon",
    "Weekday",
    # Violations
    "CodingViolation",
    "ContestDecision",
    "DetectionMethod",
    "Violation",
    "ViolationDomain",
    "ViolationStatus",
]

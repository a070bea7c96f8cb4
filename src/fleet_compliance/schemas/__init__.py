"""Engine request/response schemas."""

from .compliance import (
    AgencyHealth,
    BulkSyncResult,
    CodingCheckRequest,
    CodingCheckResponse,
    ComplianceCheckRequest,
    ComplianceCheckResponse,
    DomainComplianceStatus,
    EntitySyncResult,
    RouteCheckResult,
    SubmissionReceipt,
    SyncOutcome,
    VerificationRef,
    VerificationResult,
)

__all__ = [
    "AgencyHealth",
    "BulkSyncResult",
    "CodingCheckRequest",
    "CodingCheckResponse",
    "ComplianceCheckRequest",
    "ComplianceCheckResponse",
    "DomainComplianceStatus",
    "EntitySyncResult",
    "RouteCheckResult",
    "SubmissionReceipt",
    "SyncOutcome",
    "VerificationRef",
    "VerificationResult",
]

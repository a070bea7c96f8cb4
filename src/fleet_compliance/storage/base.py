"""Repository interfaces consumed by the engine.

Persistence itself lives outside the engine; these are the seams it is
injected through. Reads return immutable model snapshots. Writes of versioned
models are optimistic: ``save`` succeeds only when the stored version is
exactly one behind the incoming one.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from ..models.coding import CodingRule, ExemptionRequest, ExemptionStatus
from ..models.compliance import ComplianceDomain, ComplianceRecord
from ..models.monitoring import Alert, MonitoringRule
from ..models.violation import Violation, ViolationDomain, ViolationStatus


class ComplianceRecordRepository(ABC):
    """Per-(entity, domain) compliance records."""

    @abstractmethod
    async def get(
        self, entity_id: str, domain: ComplianceDomain
    ) -> ComplianceRecord | None:
        """Fetch a record, or None."""

    @abstractmethod
    async def add(self, record: ComplianceRecord) -> ComplianceRecord:
        """Insert a new record; ConflictError if one exists for the key."""

    @abstractmethod
    async def save(self, record: ComplianceRecord) -> ComplianceRecord:
        """Replace a record.

        Raises ConflictError on a stale version and ValidationError when the
        expiry date changes outside a renewal.
        """

    @abstractmethod
    async def list_by_domain(self, domain: ComplianceDomain) -> list[ComplianceRecord]:
        """All records of a domain."""

    @abstractmethod
    async def list_for_entity(self, entity_id: str) -> list[ComplianceRecord]:
        """All records of an entity across domains."""


class MonitoringRuleRepository(ABC):
    """Monitoring rules."""

    @abstractmethod
    async def get(self, rule_id: str) -> MonitoringRule | None:
        """Fetch a rule, or None."""

    @abstractmethod
    async def add(self, rule: MonitoringRule) -> MonitoringRule:
        """Insert a rule; ConflictError on duplicate id."""

    @abstractmethod
    async def save(self, rule: MonitoringRule) -> MonitoringRule:
        """Replace a rule; ConflictError on a stale version."""

    @abstractmethod
    async def list_all(self) -> list[MonitoringRule]:
        """All rules."""


class ViolationRepository(ABC):
    """Append-only violations with mutable status."""

    @abstractmethod
    async def get(self, violation_id: str) -> Violation | None:
        """Fetch a violation, or None."""

    @abstractmethod
    async def add(self, violation: Violation) -> Violation:
        """Append a violation; ConflictError on duplicate id or dedup key."""

    @abstractmethod
    async def save(self, violation: Violation) -> Violation:
        """Replace a violation; ConflictError on a stale version."""

    @abstractmethod
    async def find_by_dedup_key(self, dedup_key: str) -> Violation | None:
        """Lookup by idempotency key."""

    @abstractmethod
    async def list_for_entity(self, entity_id: str) -> list[Violation]:
        """All violations of an entity, oldest first."""

    @abstractmethod
    async def count_for_entity_since(
        self,
        entity_id: str,
        since: datetime,
        exclude_statuses: frozenset[ViolationStatus] = frozenset(),
        domain: ViolationDomain | None = None,
    ) -> int:
        """Violations of an entity dated at or after ``since``.

        ``domain`` restricts the count to one violation domain.
        """

    @abstractmethod
    async def list_by_status_due_before(
        self, status: ViolationStatus, before: datetime
    ) -> list[Violation]:
        """Violations in ``status`` whose due date is before ``before``."""


class CodingRuleRepository(ABC):
    """Number-coding rules."""

    @abstractmethod
    async def get(self, rule_id: str) -> CodingRule | None:
        """Fetch a rule, or None."""

    @abstractmethod
    async def add(self, rule: CodingRule) -> CodingRule:
        """Insert a rule; ConflictError on duplicate id."""

    @abstractmethod
    async def save(self, rule: CodingRule) -> CodingRule:
        """Replace a rule; ConflictError on a stale version."""

    @abstractmethod
    async def list_for_region(self, region_id: str) -> list[CodingRule]:
        """Rules of a region, active or not."""


class ExemptionRepository(ABC):
    """Exemption requests."""

    @abstractmethod
    async def get(self, request_id: str) -> ExemptionRequest | None:
        """Fetch a request, or None."""

    @abstractmethod
    async def add(self, request: ExemptionRequest) -> ExemptionRequest:
        """Insert a request; ConflictError on duplicate id."""

    @abstractmethod
    async def save(self, request: ExemptionRequest) -> ExemptionRequest:
        """Replace a request; ConflictError on a stale version."""

    @abstractmethod
    async def list_for_vehicle(self, vehicle_id: str) -> list[ExemptionRequest]:
        """Requests filed for a vehicle."""

    @abstractmethod
    async def list_for_driver(self, driver_id: str) -> list[ExemptionRequest]:
        """Requests filed for a driver."""

    @abstractmethod
    async def list_by_status(self, status: ExemptionStatus) -> list[ExemptionRequest]:
        """Requests in a status."""


class AlertRepository(ABC):
    """Append-only alerts with mutable status."""

    @abstractmethod
    async def get(self, alert_id: str) -> Alert | None:
        """Fetch an alert, or None."""

    @abstractmethod
    async def add(self, alert: Alert) -> Alert:
        """Append an alert; ConflictError on duplicate id."""

    @abstractmethod
    async def save(self, alert: Alert) -> Alert:
        """Replace an alert; ConflictError on a stale version."""

    @abstractmethod
    async def list_active_for_entity(
        self, entity_id: str, domain: ComplianceDomain | None = None
    ) -> list[Alert]:
        """Active alerts of an entity, optionally for one domain."""

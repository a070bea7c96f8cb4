"""In-memory indexed repositories.

Used by tests and single-process deployments. Secondary indexes keep
per-entity and per-date lookups sub-linear as history grows.
"""

import bisect
from collections import defaultdict
from datetime import datetime
from typing import Generic, TypeVar

from beartype import beartype

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..models.base import VersionedModel
from ..models.coding import CodingRule, ExemptionRequest, ExemptionStatus
from ..models.compliance import ComplianceDomain, ComplianceRecord
from ..models.monitoring import Alert, AlertStatus, MonitoringRule
from ..models.violation import Violation, ViolationDomain, ViolationStatus
from .base import (
    AlertRepository,
    CodingRuleRepository,
    ComplianceRecordRepository,
    ExemptionRepository,
    MonitoringRuleRepository,
    ViolationRepository,
)

M = TypeVar("M", bound=VersionedModel)
K = TypeVar("K")


class _VersionedStore(Generic[K, M]):
    """Keyed store enforcing insert-once and optimistic versioning."""

    def __init__(self, kind: str) -> None:
        self._kind = kind
        self._items: dict[K, M] = {}

    def get(self, key: K) -> M | None:
        return self._items.get(key)

    def values(self) -> list[M]:
        return list(self._items.values())

    def insert(self, key: K, item: M) -> M:
        if key in self._items:
            raise ConflictError(f"{self._kind} {key} already exists", key=key)
        self._items[key] = item
        return item

    def replace(self, key: K, item: M) -> M:
        current = self._items.get(key)
        if current is None:
            raise NotFoundError(f"{self._kind} {key} not found", key=key)
        if item.version != current.version + 1:
            raise ConflictError(
                f"Stale {self._kind} {key}: stored version {current.version}, "
                f"incoming version {item.version}",
                key=key,
            )
        self._items[key] = item
        return item


class InMemoryComplianceRecordRepository(ComplianceRecordRepository):
    """Compliance records indexed by key, domain and entity."""

    def __init__(self) -> None:
        self._store: _VersionedStore[tuple[str, ComplianceDomain], ComplianceRecord] = (
            _VersionedStore("Compliance record")
        )
        self._by_domain: dict[ComplianceDomain, set[str]] = defaultdict(set)
        self._by_entity: dict[str, set[ComplianceDomain]] = defaultdict(set)

    @beartype
    async def get(
        self, entity_id: str, domain: ComplianceDomain
    ) -> ComplianceRecord | None:
        return self._store.get((entity_id, domain))

    @beartype
    async def add(self, record: ComplianceRecord) -> ComplianceRecord:
        self._store.insert(record.key, record)
        self._by_domain[record.domain].add(record.entity_id)
        self._by_entity[record.entity_id].add(record.domain)
        return record

    @beartype
    async def save(self, record: ComplianceRecord) -> ComplianceRecord:
        current = self._store.get(record.key)
        if current is not None and record.expiry_date != current.expiry_date:
            if record.renewal_count != current.renewal_count + 1:
                raise ValidationError(
                    "expiry_date can only change through renewal",
                    entity_id=record.entity_id,
                    domain=record.domain.value,
                )
            if record.last_fired_escalation_level is not None:
                raise ValidationError(
                    "Renewal must reset the escalation level",
                    entity_id=record.entity_id,
                    domain=record.domain.value,
                )
        return self._store.replace(record.key, record)

    @beartype
    async def list_by_domain(self, domain: ComplianceDomain) -> list[ComplianceRecord]:
        entity_ids = sorted(self._by_domain[domain])
        records = (self._store.get((eid, domain)) for eid in entity_ids)
        return [r for r in records if r is not None]

    @beartype
    async def list_for_entity(self, entity_id: str) -> list[ComplianceRecord]:
        domains = self._by_entity.get(entity_id, set())
        records = (self._store.get((entity_id, d)) for d in domains)
        return sorted(
            (r for r in records if r is not None), key=lambda r: r.domain.value
        )


class InMemoryMonitoringRuleRepository(MonitoringRuleRepository):
    """Monitoring rules keyed by id."""

    def __init__(self) -> None:
        self._store: _VersionedStore[str, MonitoringRule] = _VersionedStore(
            "Monitoring rule"
        )

    @beartype
    async def get(self, rule_id: str) -> MonitoringRule | None:
        return self._store.get(rule_id)

    @beartype
    async def add(self, rule: MonitoringRule) -> MonitoringRule:
        return self._store.insert(rule.id, rule)

    @beartype
    async def save(self, rule: MonitoringRule) -> MonitoringRule:
        return self._store.replace(rule.id, rule)

    @beartype
    async def list_all(self) -> list[MonitoringRule]:
        return sorted(self._store.values(), key=lambda r: r.id)


class InMemoryViolationRepository(ViolationRepository):
    """Violations with entity/date and dedup-key indexes."""

    def __init__(self) -> None:
        self._store: _VersionedStore[str, Violation] = _VersionedStore("Violation")
        self._by_dedup: dict[str, str] = {}
        # entity_id -> sorted [(violation_date, violation_id)]
        self._by_entity: dict[str, list[tuple[datetime, str]]] = defaultdict(list)

    @beartype
    async def get(self, violation_id: str) -> Violation | None:
        return self._store.get(violation_id)

    @beartype
    async def add(self, violation: Violation) -> Violation:
        if violation.dedup_key is not None and violation.dedup_key in self._by_dedup:
            raise ConflictError(
                f"Duplicate violation key {violation.dedup_key}",
                dedup_key=violation.dedup_key,
            )
        self._store.insert(violation.id, violation)
        if violation.dedup_key is not None:
            self._by_dedup[violation.dedup_key] = violation.id
        bisect.insort(
            self._by_entity[violation.entity_id],
            (violation.violation_date, violation.id),
        )
        return violation

    @beartype
    async def save(self, violation: Violation) -> Violation:
        current = self._store.get(violation.id)
        if current is not None and (
            current.entity_id != violation.entity_id
            or current.violation_date != violation.violation_date
        ):
            raise ValidationError(
                "Violation entity and date are immutable", violation_id=violation.id
            )
        return self._store.replace(violation.id, violation)

    @beartype
    async def find_by_dedup_key(self, dedup_key: str) -> Violation | None:
        violation_id = self._by_dedup.get(dedup_key)
        return None if violation_id is None else self._store.get(violation_id)

    def _entity_slice(self, entity_id: str, since: datetime | None) -> list[Violation]:
        index = self._by_entity.get(entity_id, [])
        start = 0 if since is None else bisect.bisect_left(index, (since, ""))
        items = (self._store.get(vid) for _, vid in index[start:])
        return [v for v in items if v is not None]

    @beartype
    async def list_for_entity(self, entity_id: str) -> list[Violation]:
        return self._entity_slice(entity_id, None)

    @beartype
    async def count_for_entity_since(
        self,
        entity_id: str,
        since: datetime,
        exclude_statuses: frozenset[ViolationStatus] = frozenset(),
        domain: ViolationDomain | None = None,
    ) -> int:
        return sum(
            1
            for v in self._entity_slice(entity_id, since)
            if v.status not in exclude_statuses
            and (domain is None or v.domain == domain)
        )

    @beartype
    async def list_by_status_due_before(
        self, status: ViolationStatus, before: datetime
    ) -> list[Violation]:
        return sorted(
            (
                v
                for v in self._store.values()
                if v.status == status and v.due_date < before
            ),
            key=lambda v: v.due_date,
        )


class InMemoryCodingRuleRepository(CodingRuleRepository):
    """Coding rules indexed by region."""

    def __init__(self) -> None:
        self._store: _VersionedStore[str, CodingRule] = _VersionedStore("Coding rule")
        self._by_region: dict[str, set[str]] = defaultdict(set)

    @beartype
    async def get(self, rule_id: str) -> CodingRule | None:
        return self._store.get(rule_id)

    @beartype
    async def add(self, rule: CodingRule) -> CodingRule:
        self._store.insert(rule.id, rule)
        self._by_region[rule.region_id].add(rule.id)
        return rule

    @beartype
    async def save(self, rule: CodingRule) -> CodingRule:
        current = self._store.get(rule.id)
        saved = self._store.replace(rule.id, rule)
        if current is not None and current.region_id != rule.region_id:
            self._by_region[current.region_id].discard(rule.id)
            self._by_region[rule.region_id].add(rule.id)
        return saved

    @beartype
    async def list_for_region(self, region_id: str) -> list[CodingRule]:
        rule_ids = sorted(self._by_region.get(region_id, set()))
        rules = (self._store.get(rid) for rid in rule_ids)
        return [r for r in rules if r is not None]


class InMemoryExemptionRepository(ExemptionRepository):
    """Exemption requests indexed by vehicle and driver."""

    def __init__(self) -> None:
        self._store: _VersionedStore[str, ExemptionRequest] = _VersionedStore(
            "Exemption request"
        )
        self._by_vehicle: dict[str, list[str]] = defaultdict(list)
        self._by_driver: dict[str, list[str]] = defaultdict(list)

    @beartype
    async def get(self, request_id: str) -> ExemptionRequest | None:
        return self._store.get(request_id)

    @beartype
    async def add(self, request: ExemptionRequest) -> ExemptionRequest:
        self._store.insert(request.id, request)
        self._by_vehicle[request.vehicle_id].append(request.id)
        if request.driver_id is not None:
            self._by_driver[request.driver_id].append(request.id)
        return request

    @beartype
    async def save(self, request: ExemptionRequest) -> ExemptionRequest:
        current = self._store.get(request.id)
        if current is not None and (
            current.vehicle_id != request.vehicle_id
            or current.driver_id != request.driver_id
        ):
            raise ValidationError(
                "Exemption vehicle and driver are immutable", request_id=request.id
            )
        return self._store.replace(request.id, request)

    def _resolve(self, ids: list[str]) -> list[ExemptionRequest]:
        items = (self._store.get(rid) for rid in ids)
        return [r for r in items if r is not None]

    @beartype
    async def list_for_vehicle(self, vehicle_id: str) -> list[ExemptionRequest]:
        return self._resolve(self._by_vehicle.get(vehicle_id, []))

    @beartype
    async def list_for_driver(self, driver_id: str) -> list[ExemptionRequest]:
        return self._resolve(self._by_driver.get(driver_id, []))

    @beartype
    async def list_by_status(self, status: ExemptionStatus) -> list[ExemptionRequest]:
        return [r for r in self._store.values() if r.status == status]


class InMemoryAlertRepository(AlertRepository):
    """Alerts indexed by entity."""

    def __init__(self) -> None:
        self._store: _VersionedStore[str, Alert] = _VersionedStore("Alert")
        self._by_entity: dict[str, list[str]] = defaultdict(list)

    @beartype
    async def get(self, alert_id: str) -> Alert | None:
        return self._store.get(alert_id)

    @beartype
    async def add(self, alert: Alert) -> Alert:
        self._store.insert(alert.id, alert)
        self._by_entity[alert.entity_id].append(alert.id)
        return alert

    @beartype
    async def save(self, alert: Alert) -> Alert:
        return self._store.replace(alert.id, alert)

    @beartype
    async def list_active_for_entity(
        self, entity_id: str, domain: ComplianceDomain | None = None
    ) -> list[Alert]:
        alerts = (self._store.get(aid) for aid in self._by_entity.get(entity_id, []))
        return [
            a
            for a in alerts
            if a is not None
            and a.status == AlertStatus.ACTIVE
            and (domain is None or a.domain == domain)
        ]

"""Fleet operations boundary: protective actions and report requests."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from attrs import frozen
from beartype import beartype

from ..models.compliance import ComplianceDomain

logger = logging.getLogger(__name__)


@frozen
class ReportRequest:
    """Request for a compliance report about an entity."""

    report_type: str
    entity_id: str
    domain: ComplianceDomain
    requested_at: datetime


class FleetOperations(ABC):
    """Actions taken against the live fleet.

    ``disable_vehicle`` and ``suspend_driver`` are idempotent: repeating a
    command for an entity already in that state is a no-op and returns False.
    """

    @abstractmethod
    async def disable_vehicle(self, vehicle_id: str, reason: str) -> bool:
        """Take a vehicle off the road; True if its state changed."""

    @abstractmethod
    async def suspend_driver(self, driver_id: str, reason: str) -> bool:
        """Suspend a driver; True if their state changed."""

    @abstractmethod
    async def request_report(self, request: ReportRequest) -> None:
        """Queue report generation."""


class InMemoryFleetOperations(FleetOperations):
    """Reference implementation tracking disabled vehicles and drivers."""

    def __init__(self) -> None:
        self.disabled_vehicles: dict[str, str] = {}
        self.suspended_drivers: dict[str, str] = {}
        self.reports: list[ReportRequest] = []

    @beartype
    async def disable_vehicle(self, vehicle_id: str, reason: str) -> bool:
        """Disable once; later calls are no-ops."""
        if vehicle_id in self.disabled_vehicles:
            return False
        self.disabled_vehicles[vehicle_id] = reason
        logger.warning("Vehicle %s disabled: %s", vehicle_id, reason)
        return True

    @beartype
    async def suspend_driver(self, driver_id: str, reason: str) -> bool:
        """Suspend once; later calls are no-ops."""
        if driver_id in self.suspended_drivers:
            return False
        self.suspended_drivers[driver_id] = reason
        logger.warning("Driver %s suspended: %s", driver_id, reason)
        return True

    @beartype
    async def request_report(self, request: ReportRequest) -> None:
        """Record the request."""
        self.reports.append(request)

    @beartype
    async def enable_vehicle(self, vehicle_id: str) -> bool:
        """Return a vehicle to service."""
        return self.disabled_vehicles.pop(vehicle_id, None) is not None

    @beartype
    async def reinstate_driver(self, driver_id: str) -> bool:
        """Lift a driver suspension."""
        return self.suspended_drivers.pop(driver_id, None) is not None

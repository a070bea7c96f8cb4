"""Coding exemption requests."""

import logging
import secrets
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from beartype import beartype

from ..core.errors import (
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from ..core.logging_utils import log_context
from ..models.coding import ExemptionRequest, ExemptionStatus, ExemptionType
from ..storage.base import ExemptionRepository

logger = logging.getLogger(__name__)


def _approval_number(now: datetime) -> str:
    return f"EXM-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


class ExemptionManager:
    """Request, review and use coding exemptions."""

    def __init__(
        self,
        repository: ExemptionRepository,
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        self._repository = repository
        self._new_id = id_factory

    @beartype
    async def request(
        self,
        vehicle_id: str,
        exemption_type: ExemptionType,
        reason: str,
        period_start: datetime,
        period_end: datetime,
        now: datetime,
        driver_id: str | None = None,
    ) -> ExemptionRequest:
        """File a pending exemption request."""
        if period_end <= period_start:
            raise ValidationError(
                "Exemption period must end after it starts",
                vehicle_id=vehicle_id,
            )
        if not reason.strip():
            raise ValidationError("Exemption reason is required", vehicle_id=vehicle_id)

        request = ExemptionRequest(
            id=self._new_id(),
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            exemption_type=exemption_type,
            reason=reason,
            period_start=period_start,
            period_end=period_end,
            created_at=now,
        )
        stored = await self._repository.add(request)
        logger.info(
            "Exemption %s requested for %s (%s)",
            stored.id,
            vehicle_id,
            exemption_type.value,
        )
        return stored

    @beartype
    async def get(self, request_id: str) -> ExemptionRequest:
        """Fetch a request by id."""
        request = await self._repository.get(request_id)
        if request is None:
            raise NotFoundError(
                f"Exemption request {request_id} not found", request_id=request_id
            )
        return request

    @beartype
    async def review(
        self,
        request_id: str,
        approve: bool,
        reviewer: str,
        now: datetime,
        notes: str | None = None,
    ) -> ExemptionRequest:
        """Approve or deny a pending request."""
        request = await self.get(request_id)
        target = ExemptionStatus.APPROVED if approve else ExemptionStatus.DENIED
        if request.status != ExemptionStatus.PENDING:
            raise StateTransitionError(
                f"Exemption {request_id} was already reviewed",
                current=request.status.value,
                target=target.value,
            )

        reviewed = await self._repository.save(
            request.next_version(
                status=target,
                reviewed_by=reviewer,
                review_notes=notes,
                approval_number=_approval_number(now) if approve else None,
            )
        )
        logger.info("Exemption %s %s by %s", request_id, target.value, reviewer)
        return reviewed

    @beartype
    async def find_active(
        self,
        vehicle_id: str,
        driver_id: str | None,
        now: datetime,
        record_use: bool = True,
    ) -> ExemptionRequest | None:
        """Approved request covering ``now`` for the vehicle or driver.

        A match counts as one use of the exemption unless ``record_use`` is
        false.
        """
        candidates = await self._repository.list_for_vehicle(vehicle_id)
        if driver_id is not None:
            candidates += await self._repository.list_for_driver(driver_id)

        for request in candidates:
            if not request.covers(now):
                continue
            if not record_use:
                return request
            try:
                return await self._repository.save(
                    request.next_version(
                        usage_count=request.usage_count + 1, last_used_at=now
                    )
                )
            except ConflictError:
                logger.warning("Usage of exemption %s not recorded", request.id)
                return request
        return None

    @beartype
    async def expire_lapsed(self, now: datetime) -> list[ExemptionRequest]:
        """Move approved requests whose period has ended to expired."""
        expired: list[ExemptionRequest] = []
        for request in await self._repository.list_by_status(
            ExemptionStatus.APPROVED
        ):
            if request.period_end >= now:
                continue
            try:
                expired.append(
                    await self._repository.save(
                        request.next_version(status=ExemptionStatus.EXPIRED)
                    )
                )
            except ConflictError as e:
                logger.warning(
                    "Exemption not expired %s: %s", log_context(request=request.id), e
                )
        if expired:
            logger.info("Expired %d exemption(s)", len(expired))
        return expired

"""Government agency gateway.

The engine sees agencies only through :class:`GovernmentGateway`: verify a
document, submit a notice, ask for health. :class:`HttpGovernmentGateway`
implements it over ``httpx`` with a per-agency sliding-window rate limit and
health derived from recent call outcomes.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from attrs import define, field, frozen
from beartype import beartype
from pydantic import ValidationError as PydanticValidationError

from ..core.config import Settings
from ..core.errors import ExternalServiceError
from ..core.rate_limiter import RateLimitRule, SlidingWindowRateLimiter
from ..core.result_types import Err, Ok, Result
from ..models.compliance import ComplianceDomain
from ..models.monitoring import GovernmentAgency
from ..schemas.compliance import (
    AgencyHealth,
    SubmissionReceipt,
    VerificationRef,
    VerificationResult,
)

logger = logging.getLogger(__name__)

DOMAIN_AGENCY: dict[ComplianceDomain, GovernmentAgency] = {
    ComplianceDomain.FRANCHISE: GovernmentAgency.LTFRB,
    ComplianceDomain.REGISTRATION: GovernmentAgency.LTO,
    ComplianceDomain.INSURANCE: GovernmentAgency.INSURANCE_COMMISSION,
    ComplianceDomain.ENVIRONMENTAL: GovernmentAgency.LTO,
}

_VERIFY_PATHS: dict[ComplianceDomain, str] = {
    ComplianceDomain.FRANCHISE: "/franchises/{ref}/verify",
    ComplianceDomain.REGISTRATION: "/registrations/{ref}/verify",
    ComplianceDomain.INSURANCE: "/policies/{ref}/verify",
    ComplianceDomain.ENVIRONMENTAL: "/emissions/{ref}/verify",
}

DEGRADED_SUCCESS_RATE = 0.9
DOWN_AFTER_CONSECUTIVE_FAILURES = 3


@beartype
def agency_for(domain: ComplianceDomain) -> GovernmentAgency:
    """Agency that issues documents for ``domain``."""
    return DOMAIN_AGENCY[domain]


class GovernmentGateway(ABC):
    """Verify/submit/health interface to government agencies."""

    @abstractmethod
    async def verify(
        self, ref: VerificationRef
    ) -> Result[VerificationResult, ExternalServiceError]:
        """Ask the issuing agency about a document."""

    @abstractmethod
    async def submit(
        self, agency: GovernmentAgency, endpoint: str, payload: dict[str, Any]
    ) -> Result[SubmissionReceipt, ExternalServiceError]:
        """Send a notice to an agency."""

    @abstractmethod
    async def health_status(self, agency: GovernmentAgency) -> AgencyHealth:
        """Current health of an agency integration."""

    async def probe(self, agency: GovernmentAgency) -> AgencyHealth:
        """Actively check an agency and return its health."""
        return await self.health_status(agency)


@frozen
class AgencyConfig:
    """Connection settings for one agency."""

    agency: GovernmentAgency
    base_url: str
    api_key: str | None = None
    requests_per_minute: int = 60

    def url(self, path: str) -> str:
        """Absolute URL for ``path``."""
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


@beartype
def agency_configs_from_settings(
    settings: Settings,
) -> dict[GovernmentAgency, AgencyConfig]:
    """Build per-agency configuration from settings."""
    prefixes = {
        GovernmentAgency.LTFRB: "ltfrb",
        GovernmentAgency.LTO: "lto",
        GovernmentAgency.INSURANCE_COMMISSION: "insurance",
        GovernmentAgency.MMDA: "mmda",
    }
    return {
        agency: AgencyConfig(
            agency=agency,
            base_url=getattr(settings, f"{prefix}_api_base_url"),
            api_key=getattr(settings, f"{prefix}_api_key"),
            requests_per_minute=getattr(settings, f"{prefix}_requests_per_minute"),
        )
        for agency, prefix in prefixes.items()
    }


@define
class AgencyHealthTracker:
    """Rolling record of call outcomes for one agency."""

    outcomes: deque[bool] = field(factory=lambda: deque(maxlen=20))
    consecutive_failures: int = field(default=0)
    last_checked_at: datetime | None = field(default=None)

    def record(self, success: bool, at: datetime) -> None:
        """Record one call outcome."""
        self.outcomes.append(success)
        self.consecutive_failures = 0 if success else self.consecutive_failures + 1
        self.last_checked_at = at

    def status(self, now: datetime, cooldown: timedelta) -> AgencyHealth:
        """Health from consecutive failures and recent success rate.

        A down agency reads as degraded once ``cooldown`` has passed since
        the last failure, so one trial call can go through. A failed trial
        restarts the cooldown.
        """
        if self.consecutive_failures >= DOWN_AFTER_CONSECUTIVE_FAILURES:
            if self.last_checked_at is None or now - self.last_checked_at < cooldown:
                return AgencyHealth.DOWN
            return AgencyHealth.DEGRADED
        if self.outcomes:
            rate = sum(self.outcomes) / len(self.outcomes)
            if rate < DEGRADED_SUCCESS_RATE:
                return AgencyHealth.DEGRADED
        return AgencyHealth.OPERATIONAL


class HttpGovernmentGateway(GovernmentGateway):
    """Gateway over HTTP with rate limiting and outcome-based health."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        configs: dict[GovernmentAgency, AgencyConfig] | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._configs = configs or agency_configs_from_settings(settings)
        self._timeout = httpx.Timeout(settings.gateway_timeout_seconds)
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = client is None
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            {
                agency.value: RateLimitRule(max_requests=cfg.requests_per_minute)
                for agency, cfg in self._configs.items()
            },
            max_wait_seconds=settings.gateway_max_rate_limit_wait_seconds,
        )
        self._down_cooldown = timedelta(
            seconds=settings.gateway_down_cooldown_seconds
        )
        self._clock = clock
        self._health: dict[GovernmentAgency, AgencyHealthTracker] = {
            agency: AgencyHealthTracker() for agency in self._configs
        }

    async def __aenter__(self) -> "HttpGovernmentGateway":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @beartype
    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._owns_client:
            await self._client.aclose()

    def _config(self, agency: GovernmentAgency) -> AgencyConfig:
        try:
            return self._configs[agency]
        except KeyError as e:
            raise ExternalServiceError.unavailable(
                agency.value, "agency not configured"
            ) from e

    def _headers(self, config: AgencyConfig) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": "fleet-compliance"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return headers

    def _record(self, agency: GovernmentAgency, success: bool) -> None:
        self._health[agency].record(success, self._clock())

    async def _request(
        self,
        agency: GovernmentAgency,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
    ) -> Result[httpx.Response, ExternalServiceError]:
        try:
            config = self._config(agency)
        except ExternalServiceError as e:
            return Err(e)

        decision = await self._rate_limiter.acquire(agency.value)
        if not decision.allowed:
            logger.warning(
                "Rate limit reached for %s, retry after %.1fs",
                agency.value,
                decision.retry_after_seconds,
            )
            return Err(
                ExternalServiceError.rate_limited(
                    agency.value, decision.retry_after_seconds
                )
            )

        try:
            response = await self._client.request(
                method,
                config.url(path),
                json=json_body,
                headers=self._headers(config),
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            self._record(agency, False)
            logger.warning("%s %s to %s timed out", method, path, agency.value)
            return Err(ExternalServiceError.timeout(agency.value))
        except httpx.RequestError as e:
            self._record(agency, False)
            logger.warning("%s %s to %s failed: %s", method, path, agency.value, e)
            return Err(ExternalServiceError.unavailable(agency.value, str(e)))

        if response.status_code == 429:
            self._record(agency, True)
            retry_after = response.headers.get("Retry-After", "")
            wait = float(retry_after) if retry_after.isdigit() else None
            return Err(ExternalServiceError.rate_limited(agency.value, wait))
        if response.status_code >= 500:
            self._record(agency, False)
            return Err(
                ExternalServiceError.unavailable(
                    agency.value, f"HTTP {response.status_code}"
                )
            )

        self._record(agency, True)
        return Ok(response)

    @beartype
    async def verify(
        self, ref: VerificationRef
    ) -> Result[VerificationResult, ExternalServiceError]:
        """Verify a document with the agency that issued it."""
        agency = agency_for(ref.domain)
        path = _VERIFY_PATHS[ref.domain].format(
            ref=ref.document_number or ref.entity_id
        )
        result = await self._request(agency, "GET", path)
        if result.is_err():
            return result

        response = result.unwrap()
        now = self._clock()
        if response.status_code == 404:
            return Ok(
                VerificationResult(
                    entity_id=ref.entity_id,
                    domain=ref.domain,
                    agency=agency,
                    valid=False,
                    status_text="not_found",
                    checked_at=now,
                )
            )
        if response.status_code >= 400:
            return Err(
                ExternalServiceError.unavailable(
                    agency.value, f"HTTP {response.status_code}"
                )
            )

        try:
            body = response.json()
            return Ok(
                VerificationResult(
                    entity_id=ref.entity_id,
                    domain=ref.domain,
                    agency=agency,
                    valid=bool(body["valid"]),
                    expiry_date=body.get("expiry_date"),
                    status_text=body.get("status"),
                    checked_at=now,
                )
            )
        except (ValueError, KeyError, TypeError, PydanticValidationError) as e:
            logger.warning("Malformed verification response from %s: %s", agency, e)
            return Err(
                ExternalServiceError.unavailable(agency.value, "malformed response")
            )

    @beartype
    async def submit(
        self, agency: GovernmentAgency, endpoint: str, payload: dict[str, Any]
    ) -> Result[SubmissionReceipt, ExternalServiceError]:
        """POST a payload to an agency endpoint."""
        result = await self._request(agency, "POST", endpoint, json_body=payload)
        if result.is_err():
            return result

        response = result.unwrap()
        if response.status_code >= 400:
            return Err(
                ExternalServiceError.unavailable(
                    agency.value, f"HTTP {response.status_code}"
                )
            )
        reference = None
        try:
            body = response.json()
            if isinstance(body, dict):
                reference = body.get("reference_number")
        except ValueError:
            reference = None
        return Ok(
            SubmissionReceipt(
                agency=agency,
                endpoint=endpoint,
                reference_number=None if reference is None else str(reference),
                submitted_at=self._clock(),
            )
        )

    @beartype
    async def health_status(self, agency: GovernmentAgency) -> AgencyHealth:
        """Health derived from recent outcomes."""
        tracker = self._health.get(agency)
        if tracker is None:
            return AgencyHealth.DOWN
        return tracker.status(self._clock(), self._down_cooldown)

    @beartype
    async def probe(self, agency: GovernmentAgency) -> AgencyHealth:
        """Call the agency ``/health`` endpoint and return the updated health."""
        try:
            config = self._config(agency)
        except ExternalServiceError:
            return AgencyHealth.DOWN

        try:
            response = await self._client.get(
                config.url("/health"),
                headers=self._headers(config),
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("Health probe for %s failed: %s", agency.value, e)
            for _ in range(DOWN_AFTER_CONSECUTIVE_FAILURES):
                self._record(agency, False)
            return AgencyHealth.DOWN

        self._record(agency, response.status_code == 200)
        return self._health[agency].status(self._clock(), self._down_cooldown)

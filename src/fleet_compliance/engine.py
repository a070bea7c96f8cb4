"""Fleet compliance engine wiring.

:class:`ComplianceEngine` builds every service on top of injected
repositories and collaborators. Nothing here is module-level state: tests
build an engine per case, a process builds one at startup.
"""

from collections.abc import Callable
from datetime import datetime, timezone

from attrs import frozen
from beartype import beartype

from .core.cache import Cache
from .core.config import Settings, get_settings
from .core.logging_utils import get_logger
from .models.coding import CodingRule
from .models.monitoring import GovernmentAgency, MonitoringRule
from .services.coding_resolver import (
    CodingRuleResolver,
    coding_rule_cache,
    default_coding_rule,
)
from .services.compliance_check import ComplianceCheckService, verification_cache
from .services.escalation import EscalationOrchestrator
from .services.exemptions import ExemptionManager
from .services.fleet import FleetOperations, InMemoryFleetOperations
from .schemas.compliance import AgencyHealth
from .services.gateway import GovernmentGateway, HttpGovernmentGateway
from .services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from .services.records import RecordLifecycle
from .services.rule_registry import RuleRegistry, default_monitoring_rules
from .services.scheduler import MonitoringScheduler, RuleRunReport
from .services.violation_detector import ViolationDetector
from .services.violation_ledger import ViolationLedger
from .storage.base import (
    AlertRepository,
    CodingRuleRepository,
    ComplianceRecordRepository,
    ExemptionRepository,
    MonitoringRuleRepository,
    ViolationRepository,
)
from .storage.memory import (
    InMemoryAlertRepository,
    InMemoryCodingRuleRepository,
    InMemoryComplianceRecordRepository,
    InMemoryExemptionRepository,
    InMemoryMonitoringRuleRepository,
    InMemoryViolationRepository,
)

logger = get_logger(__name__)


@frozen
class EngineTickReport:
    """Everything one engine tick did."""

    ran_at: datetime
    rule_runs: tuple[RuleRunReport, ...]
    overdue_violations: int
    expired_exemptions: int
    down_agencies: tuple[GovernmentAgency, ...] = ()


class ComplianceEngine:
    """Compliance monitoring and number-coding detection, wired together."""

    def __init__(
        self,
        settings: Settings,
        *,
        records: ComplianceRecordRepository,
        rules: MonitoringRuleRepository,
        violations: ViolationRepository,
        coding_rules: CodingRuleRepository,
        exemptions: ExemptionRepository,
        alerts: AlertRepository,
        dispatcher: NotificationDispatcher,
        fleet: FleetOperations,
        gateway: GovernmentGateway,
        cache: Cache | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.settings = settings
        self.records = records
        self.alerts = alerts
        self.dispatcher = dispatcher
        self.fleet = fleet
        self.gateway = gateway
        self.cache = cache
        self._clock = clock

        thresholds = settings.domain_thresholds()
        rule_ttl = settings.coding_rule_cache_ttl_seconds
        verification_ttl = settings.verification_cache_ttl_seconds
        if not settings.cache_enabled:
            rule_ttl = verification_ttl = 0

        self.registry = RuleRegistry(rules)
        self.ledger = ViolationLedger(violations)
        self.lifecycle = RecordLifecycle(records, alerts, thresholds)
        self.orchestrator = EscalationOrchestrator(
            records, alerts, dispatcher, fleet, gateway, thresholds
        )
        self.scheduler = MonitoringScheduler(
            self.registry,
            self.orchestrator,
            max_concurrency=settings.scheduler_max_concurrency,
            clock=clock,
        )
        self.resolver = CodingRuleResolver(
            coding_rules, coding_rule_cache(rule_ttl, backend=cache)
        )
        self.exemptions = ExemptionManager(exemptions)
        self.detector = ViolationDetector(
            self.resolver,
            self.exemptions,
            self.ledger,
            dispatcher,
            settings,
            clock=clock,
        )
        self.compliance = ComplianceCheckService(
            records,
            alerts,
            self.ledger,
            gateway,
            settings,
            thresholds=thresholds,
            cache=verification_cache(verification_ttl, backend=cache),
            clock=clock,
        )

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        dispatcher: NotificationDispatcher | None = None,
        fleet: FleetOperations | None = None,
        gateway: GovernmentGateway | None = None,
        cache: Cache | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "ComplianceEngine":
        """Engine over in-memory repositories and default collaborators."""
        settings = settings or get_settings()
        return cls(
            settings,
            records=InMemoryComplianceRecordRepository(),
            rules=InMemoryMonitoringRuleRepository(),
            violations=InMemoryViolationRepository(),
            coding_rules=InMemoryCodingRuleRepository(),
            exemptions=InMemoryExemptionRepository(),
            alerts=InMemoryAlertRepository(),
            dispatcher=dispatcher or LoggingNotificationDispatcher(),
            fleet=fleet or InMemoryFleetOperations(),
            gateway=gateway or HttpGovernmentGateway(settings),
            cache=cache,
            clock=clock or (lambda: datetime.now(timezone.utc)),
        )

    @beartype
    async def install_defaults(
        self, now: datetime | None = None
    ) -> tuple[list[MonitoringRule], CodingRule]:
        """Register the stock monitoring rules and the Metro Manila coding rule."""
        now = now or self._clock()
        rules = [
            await self.registry.register(rule)
            for rule in default_monitoring_rules(now)
        ]
        coding_rule = await self.resolver.add_rule(default_coding_rule(now))
        logger.info("Installed %d monitoring rule(s) and 1 coding rule", len(rules))
        return rules, coding_rule

    @beartype
    async def tick(self, now: datetime | None = None) -> EngineTickReport:
        """Run due rules and the sweeps, then re-probe agencies that are down."""
        now = now or self._clock()
        runs = await self.scheduler.tick(now)
        overdue = await self.ledger.sweep_overdue(now)
        expired = await self.exemptions.expire_lapsed(now)
        return EngineTickReport(
            ran_at=now,
            rule_runs=tuple(runs),
            overdue_violations=len(overdue),
            expired_exemptions=len(expired),
            down_agencies=await self._probe_down_agencies(),
        )

    async def _probe_down_agencies(self) -> tuple[GovernmentAgency, ...]:
        still_down = []
        for agency in GovernmentAgency:
            if await self.gateway.health_status(agency) != AgencyHealth.DOWN:
                continue
            if await self.gateway.probe(agency) == AgencyHealth.DOWN:
                still_down.append(agency)
            else:
                logger.info("Agency %s reachable again", agency.value)
        return tuple(still_down)

    @beartype
    async def start(self, interval_seconds: float | None = None) -> None:
        """Connect the cache and start the periodic tick loop."""
        if self.cache is not None:
            await self.cache.connect()
        interval = interval_seconds or self.settings.scheduler_tick_seconds
        await self.scheduler.start(interval, runner=self.tick)
        logger.info("Compliance engine started, ticking every %.0fs", interval)

    @beartype
    async def stop(self) -> None:
        """Stop the loop and release connections."""
        await self.scheduler.stop()
        if isinstance(self.gateway, HttpGovernmentGateway):
            await self.gateway.close()
        if self.cache is not None:
            await self.cache.disconnect()
        logger.info("Compliance engine stopped")

# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Compliance monitoring and number-coding service layer."""

from fleet_compliance.core.result_types import Err, Ok, Result

from .coding_resolver import (
    CodingRuleResolver,
    CodingWindow,
    CodingWindowReason,
    banned_digits_for,
    coding_status,
    default_coding_rule,
)
from .compliance_check import ComplianceCheckService
from .escalation import EscalationOrchestrator, select_level
from .evaluator import days_until_expiry, evaluate, is_critical, thresholds_for
from .exemptions import ExemptionManager
from .fleet import FleetOperations, InMemoryFleetOperations, ReportRequest
from .gateway import GovernmentGateway, HttpGovernmentGateway, agency_for
from .notifications import (
    LoggingNotificationDispatcher,
    Notification,
    NotificationChannel,
    NotificationDispatcher,
)
from .records import RecordLifecycle
from .rule_registry import RuleRegistry, default_monitoring_rules, next_run_after
from .scheduler import MonitoringScheduler, RuleRunOutcome, RuleRunReport
from .violation_detector import ViolationDetector, last_digit_of
from .violation_ledger import ViolationLedger

__all__ = [
    "Result",
    "Ok",
    "Err",
    "CodingRuleResolver",
    "CodingWindow",
    "CodingWindowReason",
    "ComplianceCheckService",
    "EscalationOrchestrator",
    "ExemptionManager",
    "FleetOperations",
    "GovernmentGateway",
    "HttpGovernmentGateway",
    "InMemoryFleetOperations",
    "LoggingNotificationDispatcher",
    "MonitoringScheduler",
    "Notification",
    "NotificationChannel",
    "NotificationDispatcher",
    "RecordLifecycle",
    "ReportRequest",
    "RuleRegistry",
    "RuleRunOutcome",
    "RuleRunReport",
    "ViolationDetector",
    "ViolationLedger",
    "agency_for",
    "banned_digits_for",
    "coding_status",
    "days_until_expiry",
    "default_coding_rule",
    "default_monitoring_rules",
    "evaluate",
    "is_critical",
    "last_digit_of",
    "next_run_after",
    "select_level",
    "thresholds_for",
]

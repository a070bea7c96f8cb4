# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Core infrastructure components for the fleet compliance engine."""

from .cache import Cache, ReadThroughCache
from .config import Settings, clear_settings_cache, get_settings
from .errors import (
    ComplianceError,
    ConflictError,
    ExternalServiceError,
    ExternalServiceErrorKind,
    NotFoundError,
    StateTransitionError,
    TerminalStateError,
    ValidationError,
)
from .result_types import Err, Ok, Result

__all__ = [
    "Cache",
    "ReadThroughCache",
    "Settings",
    "clear_settings_cache",
    "get_settings",
    "ComplianceError",
    "ConflictError",
    "ExternalServiceError",
    "ExternalServiceErrorKind",
    "NotFoundError",
    "StateTransitionError",
    "TerminalStateError",
    "ValidationError",
    "Err",
    "Ok",
    "Result",
]

"""Central logging utilities for the fleet compliance engine.

This module enforces a consistent logging configuration across the entire
code-base and provides a helper for retrieving module-scoped loggers.

Key Features
------------
1. configure_logging(): idempotent initialization of the root logger.
2. get_logger(name): typed helper that always returns a configured logger.
3. log_context(): flattens identifiers into a stable ``key=value`` suffix so
   fail-soft handlers log which rule, entity or agency was involved.
"""

from __future__ import annotations

import logging
from typing import Final

from beartype import beartype

__all__: Final = [
    "configure_logging",
    "get_logger",
    "log_context",
]

_DEFAULT_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_is_configured: bool = False


@beartype
def configure_logging(
    *, level: int = logging.INFO, fmt: str = _DEFAULT_LOG_FORMAT
) -> None:
    """Configure the root logger exactly once.

    Calling this function multiple times is safe – configuration will only
    be applied on the first invocation.
    """
    global _is_configured
    if _is_configured:
        return

    logging.basicConfig(level=level, format=fmt)
    _is_configured = True


@beartype
def get_logger(name: str | None = None, *, level: int | None = None) -> logging.Logger:
    """Return a module-scoped logger that is guaranteed to be configured."""
    configure_logging()
    logger = logging.getLogger(name or "fleet_compliance")
    if level is not None:
        logger.setLevel(level)
    return logger


@beartype
def log_context(**fields: object) -> str:
    """Render identifiers as ``key=value`` pairs, skipping empty values."""
    return " ".join(
        f"{key}={value}" for key, value in sorted(fields.items()) if value is not None
    )

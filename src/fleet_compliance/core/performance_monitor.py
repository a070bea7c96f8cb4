# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Performance monitoring decorator for engine operations."""

import inspect
import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from attrs import define, field
from beartype import beartype

P = ParamSpec("P")
T = TypeVar("T")

logger = logging.getLogger(__name__)


@define
class OperationStats:
    """Running statistics for a single operation name."""

    calls: int = field(default=0)
    failures: int = field(default=0)
    slow_calls: int = field(default=0)
    total_duration_ms: float = field(default=0.0)
    max_duration_ms: float = field(default=0.0)

    @property
    def avg_duration_ms(self) -> float:
        """Average call duration in milliseconds."""
        return self.total_duration_ms / self.calls if self.calls else 0.0


class PerformanceTracker:
    """Class-based performance tracking for engine operations."""

    def __init__(self) -> None:
        self._operation_stats: dict[str, OperationStats] = {}

    @beartype
    def track_operation(
        self, operation_name: str, duration_ms: float, success: bool, slow: bool
    ) -> None:
        """Track an operation's performance."""
        stats = self._operation_stats.setdefault(operation_name, OperationStats())
        stats.calls += 1
        stats.total_duration_ms += duration_ms
        stats.max_duration_ms = max(stats.max_duration_ms, duration_ms)
        if not success:
            stats.failures += 1
        if slow:
            stats.slow_calls += 1

    @beartype
    def get_stats(self, operation_name: str) -> OperationStats | None:
        """Get statistics for an operation."""
        return self._operation_stats.get(operation_name)

    @beartype
    def reset(self) -> None:
        """Clear all statistics."""
        self._operation_stats.clear()


performance_tracker = PerformanceTracker()


def _record(
    operation_name: str,
    duration_ms: float,
    max_duration_ms: int,
    log_slow_operations: bool,
    error: BaseException | None = None,
) -> None:
    slow = duration_ms > max_duration_ms
    performance_tracker.track_operation(
        operation_name, duration_ms, success=error is None, slow=slow
    )
    if error is not None:
        logger.warning(
            "PERFORMANCE ERROR: %s failed after %.2fms: %s",
            operation_name,
            duration_ms,
            error,
        )
    elif slow and log_slow_operations:
        logger.warning(
            "PERFORMANCE WARNING: %s took %.2fms (threshold: %dms)",
            operation_name,
            duration_ms,
            max_duration_ms,
        )


@beartype
def performance_monitor(
    operation_name: str,
    max_duration_ms: int = 2000,
    log_slow_operations: bool = True,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator to monitor the duration of engine operations.

    Tracks execution time with a warning for slow operations and counts
    failures per operation in :data:`performance_tracker`.

    Args:
        operation_name: Name of the operation for monitoring
        max_duration_ms: Alert threshold in milliseconds
        log_slow_operations: Whether to log slow operations
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)  # type: ignore[misc]
            except Exception as e:
                _record(
                    operation_name,
                    (time.perf_counter() - start_time) * 1000,
                    max_duration_ms,
                    log_slow_operations,
                    error=e,
                )
                raise
            _record(
                operation_name,
                (time.perf_counter() - start_time) * 1000,
                max_duration_ms,
                log_slow_operations,
            )
            return result

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _record(
                    operation_name,
                    (time.perf_counter() - start_time) * 1000,
                    max_duration_ms,
                    log_slow_operations,
                    error=e,
                )
                raise
            _record(
                operation_name,
                (time.perf_counter() - start_time) * 1000,
                max_duration_ms,
                log_slow_operations,
            )
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper

    return decorator

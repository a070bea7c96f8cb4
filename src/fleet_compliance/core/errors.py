"""Error taxonomy for the compliance engine.

Errors raised by the engine all derive from :class:`ComplianceError` and can
be rendered with :meth:`ComplianceError.to_dict` by whatever transport sits
in front of the engine.
"""

from enum import Enum
from typing import Any

from beartype import beartype


class ComplianceError(Exception):
    """Base class for compliance engine errors."""

    code = "compliance_error"

    def __init__(self, message: str, **details: Any) -> None:
        """Initialize error with a message and structured details."""
        self.message = message
        self.details = details
        super().__init__(message)

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Convert to a serializable error payload."""
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = {k: str(v) for k, v in self.details.items()}
        return payload


class ValidationError(ComplianceError):
    """Malformed rule or entity input."""

    code = "validation_error"


class NotFoundError(ComplianceError):
    """Unknown entity, rule or violation id."""

    code = "not_found"


class ConflictError(ComplianceError):
    """Duplicate key or stale version."""

    code = "conflict"


class StateTransitionError(ComplianceError):
    """Illegal status change."""

    code = "state_transition_error"

    def __init__(
        self, message: str, *, current: str | None = None, target: str | None = None
    ) -> None:
        """Initialize with the source and target states."""
        super().__init__(message, current=current, target=target)
        self.current = current
        self.target = target


class TerminalStateError(StateTransitionError, ConflictError):
    """Attempt to move a violation out of a terminal state (paid/dismissed)."""

    code = "terminal_state"


class ExternalServiceErrorKind(str, Enum):
    """Failure modes of external collaborators."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


class ExternalServiceError(ComplianceError):
    """Government gateway or notification channel failure."""

    code = "external_service_error"

    def __init__(
        self,
        kind: ExternalServiceErrorKind,
        message: str,
        *,
        service: str,
        retry_after_seconds: float | None = None,
    ) -> None:
        """Initialize with failure kind and the failing service name."""
        super().__init__(message, kind=kind.value, service=service)
        self.kind = kind
        self.service = service
        self.retry_after_seconds = retry_after_seconds

    @classmethod
    def rate_limited(
        cls, service: str, retry_after_seconds: float | None = None
    ) -> "ExternalServiceError":
        """Build a rate-limited error."""
        return cls(
            ExternalServiceErrorKind.RATE_LIMITED,
            f"Rate limit reached for {service}",
            service=service,
            retry_after_seconds=retry_after_seconds,
        )

    @classmethod
    def timeout(cls, service: str) -> "ExternalServiceError":
        """Build a timeout error."""
        return cls(
            ExternalServiceErrorKind.TIMEOUT,
            f"Timed out waiting for {service}",
            service=service,
        )

    @classmethod
    def unavailable(cls, service: str, reason: str = "") -> "ExternalServiceError":
        """Build an unavailable error."""
        message = f"{service} unavailable"
        if reason:
            message = f"{message}: {reason}"
        return cls(ExternalServiceErrorKind.UNAVAILABLE, message, service=service)

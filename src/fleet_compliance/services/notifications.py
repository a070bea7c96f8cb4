"""Notification dispatch boundary."""

import logging
from abc import ABC, abstractmethod
from enum import Enum

from beartype import beartype
from pydantic import Field

from ..models.base import BaseModelConfig
from ..models.monitoring import AlertPriority, RecipientRole
from ..models.violation import ViolationDomain

logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    """Delivery channels."""

    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"


@beartype
class Notification(BaseModelConfig):
    """A message addressed to recipient roles about one entity."""

    channel: NotificationChannel
    recipients: tuple[RecipientRole, ...] = Field(..., min_length=1)
    template: str = Field(..., min_length=1)
    priority: AlertPriority = Field(default=AlertPriority.MEDIUM)
    entity_id: str = Field(..., min_length=1)
    domain: ViolationDomain
    context: dict[str, str] = Field(default_factory=dict)


class NotificationDispatcher(ABC):
    """Fan-out to email, SMS and in-app channels.

    ``send`` raises :class:`~fleet_compliance.core.errors.ExternalServiceError`
    when a channel is unavailable.
    """

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver one notification."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that records notifications and writes them to the log."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    @beartype
    async def send(self, notification: Notification) -> None:
        """Log the notification."""
        self.sent.append(notification)
        logger.info(
            "Notification %s/%s to %s for %s (%s)",
            notification.channel.value,
            notification.template,
            ",".join(r.value for r in notification.recipients),
            notification.entity_id,
            notification.domain.value,
        )

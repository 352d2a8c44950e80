"""Abstract base for delivery channel adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from src.alerts.config import ChannelType
from src.alerts.models import AlertInstance, ChannelConfiguration
from src.alerts.templates import NotificationTemplate


@dataclass
class DeliveryPayload:
    """Everything an adapter needs to deliver one alert notification."""
    alert: AlertInstance
    template: NotificationTemplate
    channel_config: Optional[ChannelConfiguration] = None
    escalation_level: int = 0


@dataclass
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class ChannelAdapter(ABC):
    """Delivery channel adapter interface.

    `send` either returns a DeliveryResult or raises; the caller turns
    both failed results and exceptions into failed log entries.
    """

    channel_type: ChannelType

    @abstractmethod
    def send(self, recipient: str, payload: DeliveryPayload) -> DeliveryResult:
        """Send a notification to one recipient.

        Args:
            recipient: Channel-specific address (email, phone number, URL).
            payload: Alert, rendered template and channel configuration.

        Returns:
            DeliveryResult with the provider message id on success.
        """

    @abstractmethod
    def validate_recipient(self, recipient: str) -> bool:
        """Validate that the recipient is addressable on this channel."""

    def close(self) -> None:
        """Release provider connections. Adapters without any keep the no-op."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

"""Notification delivery channel adapters."""

from src.alerts.channels.base import ChannelAdapter, DeliveryPayload, DeliveryResult
from src.alerts.channels.email import EmailAdapter, SmtpConfig
from src.alerts.channels.sms import SmsAdapter, TwilioConfig
from src.alerts.channels.webhook import WebhookAdapter

__all__ = [
    "ChannelAdapter",
    "DeliveryPayload",
    "DeliveryResult",
    "EmailAdapter",
    "SmsAdapter",
    "SmtpConfig",
    "TwilioConfig",
    "WebhookAdapter",
]

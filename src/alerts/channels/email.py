"""Email notification channel.

SMTP delivery of the plain and HTML alert bodies.
"""

import logging
import re
import smtplib
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Callable, Optional

from src.alerts.channels.base import ChannelAdapter, DeliveryPayload, DeliveryResult
from src.alerts.config import ChannelType
from src.alerts.exceptions import DeliveryError
from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class SmtpConfig:
    """SMTP connection settings. An empty host means dry run."""
    host: str = ""
    port: int = 587
    use_tls: bool = True
    username: str = ""
    password: str = ""
    sender_email: str = "alerts@example.com"
    sender_name: str = "Building Alerts"
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            use_tls=settings.smtp_use_tls,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender_email=settings.email_from_address,
            sender_name=settings.email_from_name,
            timeout_seconds=settings.channel_timeout_seconds,
        )


class EmailAdapter(ChannelAdapter):
    """Email delivery over SMTP."""

    channel_type = ChannelType.EMAIL

    def __init__(
        self,
        config: Optional[SmtpConfig] = None,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self.config = config or SmtpConfig.from_settings(get_settings())
        self._smtp_factory = smtp_factory

    def send(self, recipient: str, payload: DeliveryPayload) -> DeliveryResult:
        if not self.validate_recipient(recipient):
            return DeliveryResult(success=False, error=f"Invalid email address {recipient!r}")

        message_id = f"email_{uuid.uuid4().hex[:12]}"
        message = self._build_message(recipient, payload, message_id)

        if not self.config.host:
            logger.info("Email (dry run) to %s: %s", recipient, message["Subject"])
            return DeliveryResult(success=True, message_id=message_id)

        try:
            with self._smtp_factory(
                self.config.host, self.config.port, timeout=self.config.timeout_seconds,
            ) as smtp:
                if self.config.use_tls:
                    smtp.starttls()
                if self.config.username:
                    smtp.login(self.config.username, self.config.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery to {recipient} failed: {e}", "email") from e

        return DeliveryResult(success=True, message_id=message_id)

    def validate_recipient(self, recipient: str) -> bool:
        return bool(EMAIL_REGEX.match(recipient))

    def _build_message(
        self,
        recipient: str,
        payload: DeliveryPayload,
        message_id: str,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = payload.template.subject
        message["From"] = formataddr((self.config.sender_name, self.config.sender_email))
        message["To"] = recipient
        message["X-Alert-Id"] = payload.alert.id
        message["X-Message-Ref"] = message_id
        message.set_content(payload.template.body)
        if payload.template.html_body:
            message.add_alternative(payload.template.html_body, subtype="html")
        return message

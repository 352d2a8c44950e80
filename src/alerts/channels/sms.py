"""SMS notification channel.

Twilio delivery of a single-segment alert text.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from src.alerts.channels.base import ChannelAdapter, DeliveryPayload, DeliveryResult
from src.alerts.config import ChannelType
from src.alerts.exceptions import DeliveryError
from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)

PHONE_REGEX = re.compile(r"^\+?[1-9]\d{6,14}$")


@dataclass
class TwilioConfig:
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioConfig":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
        )


class SmsAdapter(ChannelAdapter):
    """SMS delivery channel.

    Without a Twilio account SID configured, sends are logged as a dry run.
    """

    channel_type = ChannelType.SMS

    def __init__(
        self,
        config: Optional[TwilioConfig] = None,
        client: Optional[Any] = None,
    ) -> None:
        self.config = config or TwilioConfig.from_settings(get_settings())
        self._client = client

    def send(self, recipient: str, payload: DeliveryPayload) -> DeliveryResult:
        if not self.validate_recipient(recipient):
            return DeliveryResult(success=False, error=f"Invalid phone number {recipient!r}")

        body = payload.template.sms_text()

        if self._client is None and not self.config.account_sid:
            logger.info("SMS (dry run) to %s", recipient)
            return DeliveryResult(success=True, message_id=f"sms_{uuid.uuid4().hex[:12]}")

        try:
            message = self._get_client().messages.create(
                to=recipient,
                from_=self.config.from_number,
                body=body,
            )
        except Exception as e:
            raise DeliveryError(f"SMS delivery to {recipient} failed: {e}", "sms") from e

        return DeliveryResult(success=True, message_id=getattr(message, "sid", None))

    def validate_recipient(self, recipient: str) -> bool:
        """Validate phone number format (E.164)."""
        return bool(PHONE_REGEX.match(recipient))

    def _get_client(self) -> Any:
        if self._client is None:
            from twilio.rest import Client

            self._client = Client(self.config.account_sid, self.config.auth_token)
        return self._client

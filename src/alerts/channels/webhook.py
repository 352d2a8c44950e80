"""Webhook notification channel.

HTTP delivery of the alert JSON payload with HMAC signing and a bounded
request timeout.
"""

import hashlib
import hmac
import json
import logging
import re
import uuid
from typing import Optional

import httpx

from src.alerts.channels.base import ChannelAdapter, DeliveryPayload, DeliveryResult
from src.alerts.config import ChannelType, DEFAULT_CHANNEL_TIMEOUT_SECONDS
from src.alerts.exceptions import DeliveryError, DeliveryTimeoutError
from src.alerts.models import WebhookChannelConfig
from src.alerts.templates import webhook_payload
from src.settings import get_settings

logger = logging.getLogger(__name__)

URL_REGEX = re.compile(
    r"^https?://[a-zA-Z0-9]([a-zA-Z0-9\-]*[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9\-]*[a-zA-Z0-9])?)*"
    r"(:\d+)?(/.*)?$"
)

SIGNATURE_HEADER = "X-Alert-Signature"


class WebhookAdapter(ChannelAdapter):
    """Webhook delivery channel with HMAC signing."""

    channel_type = ChannelType.WEBHOOK

    def __init__(
        self,
        signing_secret: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        settings = get_settings()
        self.signing_secret = (
            signing_secret if signing_secret is not None else settings.webhook_signing_secret
        )
        self.timeout_seconds = timeout_seconds or settings.channel_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.Client()

    def send(self, recipient: str, payload: DeliveryPayload) -> DeliveryResult:
        """POST (or the configured method) the alert payload to `recipient`.

        Non-2xx responses and transport errors raise DeliveryError; a timeout
        raises DeliveryTimeoutError.
        """
        if not self.validate_recipient(recipient):
            return DeliveryResult(success=False, error=f"Invalid webhook URL {recipient!r}")

        config = payload.channel_config
        if not isinstance(config, WebhookChannelConfig):
            config = WebhookChannelConfig(webhook_url=recipient)

        body = json.dumps(webhook_payload(payload.alert, payload.template), default=str)
        headers = {"Content-Type": "application/json", **config.webhook_headers}
        if self.signing_secret:
            headers[SIGNATURE_HEADER] = self._sign(body)

        timeout = config.webhook_timeout or self.timeout_seconds or DEFAULT_CHANNEL_TIMEOUT_SECONDS

        try:
            response = self._client.request(
                config.webhook_method.upper(),
                recipient,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise DeliveryTimeoutError(
                f"Webhook {recipient} timed out after {timeout}s", "webhook",
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook {recipient} failed: {e}", "webhook") from e

        if not response.is_success:
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.reason_phrase}", "webhook",
            )

        message_id = response.headers.get("X-Request-Id") or f"webhook_{uuid.uuid4().hex[:12]}"
        logger.debug("Webhook delivered to %s (HTTP %d)", recipient, response.status_code)
        return DeliveryResult(success=True, message_id=message_id)

    def validate_recipient(self, recipient: str) -> bool:
        """Validate webhook URL format."""
        return bool(URL_REGEX.match(recipient))

    def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client and not self._client.is_closed:
            self._client.close()

    def _sign(self, body: str) -> str:
        """HMAC-SHA256 hex signature of the request body."""
        return hmac.new(
            self.signing_secret.encode("utf-8"),
            body.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

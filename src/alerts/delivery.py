"""Notification delivery and escalation service.

Routes an alert to its channels and recipients, fans the sends out
concurrently with a bounded wait, and turns every attempt (sent, failed
or timed out) into a NotificationLog entry.
"""

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.alerts.channels.base import ChannelAdapter, DeliveryPayload
from src.alerts.channels.email import EmailAdapter
from src.alerts.channels.sms import SmsAdapter
from src.alerts.channels.webhook import WebhookAdapter
from src.alerts.config import ChannelType, MAX_DELIVERY_RETRIES, NotificationStatus
from src.alerts.escalation import EscalationScheduler
from src.alerts.models import (
    AlertInstance,
    EscalationPolicy,
    EscalationStage,
    NotificationChannel,
    NotificationLog,
    NotificationSettings,
    _utc_now,
)
from src.alerts.routing import DeliveryTarget, NotificationRouter
from src.alerts.store import AlertStore, InMemoryAlertStore
from src.alerts.templates import (
    NotificationTemplate,
    escalation_template,
    notification_template,
)
from src.logging_config import AlertLogContext, log_performance
from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    target: DeliveryTarget
    template: NotificationTemplate
    escalation_level: int = 0
    retry_count: int = 0


def default_adapters(app_settings: Optional[Settings] = None) -> dict[ChannelType, ChannelAdapter]:
    """Adapters for every channel type, configured from settings."""
    app_settings = app_settings or get_settings()
    return {
        ChannelType.EMAIL: EmailAdapter(),
        ChannelType.SMS: SmsAdapter(),
        ChannelType.WEBHOOK: WebhookAdapter(
            signing_secret=app_settings.webhook_signing_secret,
            timeout_seconds=app_settings.channel_timeout_seconds,
        ),
    }


class NotificationDeliveryService:
    """Sends alert notifications, escalations and retries.

    Stateless apart from the injected store and adapters. The service does
    not modify the alerts it is given; callers append the returned entries
    (`AlertInstance.append_notifications`) and move escalation levels
    (`AlertInstance.escalate_to`), or use `deliver` / `escalate` which do both.
    """

    def __init__(
        self,
        adapters: Optional[dict[ChannelType, ChannelAdapter]] = None,
        store: Optional[AlertStore] = None,
        app_settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        channel_timeout: Optional[float] = None,
        max_workers: Optional[int] = None,
        scheduler: Optional[EscalationScheduler] = None,
    ) -> None:
        self.app_settings = app_settings or get_settings()
        self.adapters = adapters if adapters is not None else default_adapters(self.app_settings)
        self.store = store or InMemoryAlertStore()
        self.router = NotificationRouter(self.store)
        self.scheduler = scheduler or EscalationScheduler()
        self.clock = clock or _utc_now
        self.channel_timeout = channel_timeout or self.app_settings.channel_timeout_seconds
        self.max_workers = max_workers or self.app_settings.delivery_workers

    # ── Public API ───────────────────────────────────────────────────

    @log_performance()
    def send_alert_notifications(
        self,
        settings: NotificationSettings,
        alert: AlertInstance,
    ) -> list[NotificationLog]:
        """Send the initial notifications for an alert.

        Args:
            settings: Notification settings of the alert's configuration.
            alert: Alert to notify about.

        Returns:
            New log entries sorted by sent_at; empty when every channel
            was suppressed.
        """
        with AlertLogContext(alert_id=alert.id):
            decision = self.router.route(settings, alert, self.clock())
            if decision.suppressed or not decision.targets:
                return []

            template = notification_template(
                alert, self.app_settings.dashboard_url, settings.custom_message_template,
            )
            jobs = [_Job(target, template) for target in decision.targets]
            return self._dispatch(alert, jobs)

    @log_performance()
    def handle_escalation(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        stage_index: int,
        settings: Optional[NotificationSettings] = None,
    ) -> list[NotificationLog]:
        """Notify the recipients of one escalation stage.

        A stage that is not ready (alert closed or acknowledged, stage
        already performed, timeout not elapsed, limit reached) is a no-op.

        Args:
            alert: Alert to escalate.
            policy: Escalation policy of the alert's configuration.
            stage_index: Zero-based stage to run; moves the alert to level
                stage_index + 1.
            settings: Notification settings used to resolve recipient ids
                and channel configuration.

        Returns:
            New log entries tagged with the new escalation level, after all
            entries already in the alert's log.
        """
        with AlertLogContext(alert_id=alert.id):
            stage = self.scheduler.ready_stage(alert, policy, stage_index, self.clock())
            if stage is None:
                return []

            level = stage_index + 1
            targets = self.router.route_stage(settings, stage)
            if not targets:
                logger.warning(
                    "Escalation stage %d of policy %s has no reachable recipients",
                    stage_index, policy.id,
                )
                return []

            template = escalation_template(
                alert, stage, level, self.app_settings.dashboard_url,
            )
            jobs = [_Job(target, template, escalation_level=level) for target in targets]
            entries = self._dispatch(alert, jobs)
            logger.info(
                "Alert %s escalated to level %d: %d notifications",
                alert.id, level, len(entries),
            )
            return entries

    def retry_failed_notifications(
        self,
        alert: AlertInstance,
        entries: Optional[list[NotificationLog]] = None,
        max_retries: int = MAX_DELIVERY_RETRIES,
        settings: Optional[NotificationSettings] = None,
    ) -> list[NotificationLog]:
        """Re-send failed entries whose backoff (2^retry_count minutes) has elapsed.

        Only the latest attempt per (channel, recipient, escalation level)
        is considered, and only while retry_count < max_retries.

        Returns:
            New entries with retry_count incremented.
        """
        entries = alert.notification_log if entries is None else entries
        now = self.clock()
        configured = {c.type: c for c in (settings.channels if settings else [])}

        latest: dict[tuple, NotificationLog] = {}
        for entry in sorted(entries, key=lambda e: e.sent_at):
            latest[(entry.channel, entry.recipient, entry.escalation_level)] = entry

        jobs: list[_Job] = []
        for entry in latest.values():
            if entry.is_sent or entry.retry_count >= max_retries:
                continue
            if now - entry.sent_at < timedelta(minutes=2 ** entry.retry_count):
                continue

            channel = configured.get(entry.channel, NotificationChannel(type=entry.channel))
            target = DeliveryTarget(
                entry.channel, entry.recipient, entry.recipient,
                channel.resolved_configuration(),
            )
            jobs.append(_Job(
                target,
                self._retry_template(alert, entry.escalation_level, settings),
                escalation_level=entry.escalation_level,
                retry_count=entry.retry_count + 1,
            ))

        if not jobs:
            return []
        with AlertLogContext(alert_id=alert.id):
            logger.info("Retrying %d failed notifications for alert %s", len(jobs), alert.id)
            return self._dispatch(alert, jobs)

    def deliver(self, settings: NotificationSettings, alert: AlertInstance) -> list[NotificationLog]:
        """Send initial notifications and append them to the alert's log."""
        entries = self.send_alert_notifications(settings, alert)
        alert.append_notifications(entries)
        return entries

    def escalate(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        settings: Optional[NotificationSettings] = None,
    ) -> list[NotificationLog]:
        """Run the alert's next stage and record it on the alert."""
        stage_index = alert.escalation_level
        entries = self.handle_escalation(alert, policy, stage_index, settings)
        if entries:
            alert.append_notifications(entries)
            alert.escalate_to(stage_index + 1, self.clock())
        return entries

    def close(self) -> None:
        """Close every channel adapter."""
        for adapter in self.adapters.values():
            adapter.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Fan-out ──────────────────────────────────────────────────────

    def _dispatch(self, alert: AlertInstance, jobs: list[_Job]) -> list[NotificationLog]:
        """Send all jobs concurrently and collect one entry per job.

        Waits at most `channel_timeout` seconds; jobs still running then
        are recorded as failed and abandoned. Jobs still queued behind them
        are cancelled and recorded as not dispatched.
        """
        floor = alert.last_logged_at
        executor = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(jobs))))
        futures = {
            executor.submit(
                contextvars.copy_context().run, self._send_one, alert, job, floor,
            ): job
            for job in jobs
        }
        done, pending = wait(futures, timeout=self.channel_timeout)
        executor.shutdown(wait=False, cancel_futures=True)

        results = [(futures[future], future.result()) for future in done]
        for future in pending:
            job = futures[future]
            if future.cancelled():
                logger.warning(
                    "%s delivery to %s not dispatched before %.1fs timeout",
                    job.target.channel_type.value, job.target.address, self.channel_timeout,
                )
                error = f"Not dispatched before timeout after {self.channel_timeout}s"
            else:
                logger.warning(
                    "%s delivery to %s timed out after %.1fs",
                    job.target.channel_type.value, job.target.address, self.channel_timeout,
                )
                error = f"Timed out after {self.channel_timeout}s"
            results.append((job, self._entry(
                alert, job, self._stamp(floor), NotificationStatus.FAILED, error=error,
            )))

        results.sort(key=lambda pair: pair[1].sent_at)
        for job, entry in results:
            self.store.record_notification(
                job.target.recipient_key, entry, alert.configuration_id, alert.rule_id,
            )
        return [entry for _, entry in results]

    def _send_one(
        self,
        alert: AlertInstance,
        job: _Job,
        floor: Optional[datetime],
    ) -> NotificationLog:
        target = job.target
        sent_at = self._stamp(floor)
        adapter = self.adapters.get(target.channel_type)
        if adapter is None:
            return self._entry(
                alert, job, sent_at, NotificationStatus.FAILED,
                error=f"No adapter for channel {target.channel_type.value}",
            )

        payload = DeliveryPayload(
            alert=alert,
            template=job.template,
            channel_config=target.config,
            escalation_level=job.escalation_level,
        )
        try:
            result = adapter.send(target.address, payload)
        except Exception as exc:
            logger.warning(
                "%s delivery to %s failed: %s",
                target.channel_type.value, target.address, exc,
            )
            return self._entry(alert, job, sent_at, NotificationStatus.FAILED, error=str(exc))

        if not result.success:
            logger.warning(
                "%s delivery to %s rejected: %s",
                target.channel_type.value, target.address, result.error,
            )
            return self._entry(
                alert, job, sent_at, NotificationStatus.FAILED,
                error=result.error or "Delivery failed",
            )
        return self._entry(
            alert, job, sent_at, NotificationStatus.SENT, message_id=result.message_id,
        )

    def _stamp(self, floor: Optional[datetime]) -> datetime:
        now = self.clock()
        return max(now, floor) if floor is not None else now

    @staticmethod
    def _entry(
        alert: AlertInstance,
        job: _Job,
        sent_at: datetime,
        status: NotificationStatus,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> NotificationLog:
        return NotificationLog(
            channel=job.target.channel_type,
            recipient=job.target.address,
            sent_at=sent_at,
            status=status,
            message_id=message_id,
            error_message=error,
            retry_count=job.retry_count,
            escalation_level=job.escalation_level,
            alert_id=alert.id,
        )

    def _retry_template(
        self,
        alert: AlertInstance,
        escalation_level: int,
        settings: Optional[NotificationSettings],
    ) -> NotificationTemplate:
        if escalation_level > 0:
            stage = EscalationStage(level=escalation_level, require_acknowledgment=False)
            return escalation_template(
                alert, stage, escalation_level, self.app_settings.dashboard_url,
            )
        return notification_template(
            alert,
            self.app_settings.dashboard_url,
            settings.custom_message_template if settings else None,
        )

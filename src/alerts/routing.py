"""Notification routing.

Decides which (channel, address) pairs an alert is delivered to: channel
priority filters, quiet hours, similar-alert cooldown, recipient
eligibility and per-recipient frequency limits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.alerts.conditions import resolve_zone
from src.alerts.config import AlertPriority, ChannelType
from src.alerts.models import (
    AlertInstance,
    ChannelConfiguration,
    EmailChannelConfig,
    EscalationStage,
    NotificationChannel,
    NotificationRecipient,
    NotificationSettings,
    OnCallSchedule,
    QuietHours,
    SmsChannelConfig,
    WebhookChannelConfig,
)
from src.alerts.store import AlertStore

logger = logging.getLogger(__name__)


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_window(moment: time, start: time, end: time) -> bool:
    """Membership in [start, end), wrapping past midnight when start > end.

    An empty window (start == end) contains nothing.
    """
    if start == end:
        return False
    if start < end:
        return start <= moment < end
    return moment >= start or moment < end


def _sunday_based(weekday: int) -> int:
    # Python weekday(): Monday=0; schedules use Sunday=0
    return (weekday + 1) % 7


def is_quiet_time(
    quiet_hours: QuietHours,
    severity: AlertPriority,
    alert_id: str,
    at: datetime,
) -> bool:
    """Whether delivery at `at` falls in quiet hours for this alert.

    `at` is converted into the quiet-hours timezone first. Critical alerts
    and listed exceptions always bypass.
    """
    if not quiet_hours.enabled:
        return False
    if severity == AlertPriority.CRITICAL:
        return False
    if severity.value in quiet_hours.exceptions or alert_id in quiet_hours.exceptions:
        return False

    try:
        local = at.astimezone(ZoneInfo(quiet_hours.timezone))
        start = parse_hhmm(quiet_hours.start_time)
        end = parse_hhmm(quiet_hours.end_time)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as exc:
        logger.warning("Ignoring invalid quiet hours for alert %s: %s", alert_id, exc)
        return False

    if quiet_hours.weekend_override and local.weekday() >= 5:
        return True
    return in_window(local.time(), start, end)


def is_on_call(schedule: Optional[OnCallSchedule], at: datetime) -> bool:
    """Whether a recipient's on-call schedule covers `at`.

    No schedule (or one without periods) means always reachable. A period
    that wraps midnight belongs to the day it starts on.
    """
    if schedule is None or not schedule.schedules:
        return True

    local = at.astimezone(resolve_zone(schedule.timezone))
    moment = local.time()
    today = _sunday_based(local.weekday())
    yesterday = (today - 1) % 7

    for period in schedule.schedules:
        if period.effective_date_start and local.date() < period.effective_date_start:
            continue
        if period.effective_date_end and local.date() > period.effective_date_end:
            continue

        try:
            start = parse_hhmm(period.start_time)
            end = parse_hhmm(period.end_time)
        except ValueError:
            logger.warning(
                "Skipping on-call period with invalid times %r-%r",
                period.start_time, period.end_time,
            )
            continue
        if start < end:
            if today in period.days_of_week and start <= moment < end:
                return True
        elif start > end:
            if today in period.days_of_week and moment >= start:
                return True
            if yesterday in period.days_of_week and moment < end:
                return True
    return False


def recipient_eligible(
    recipient: NotificationRecipient,
    severity: AlertPriority,
    channel: ChannelType,
    at: datetime,
    tz_name: str = "UTC",
) -> bool:
    prefs = recipient.notification_preferences
    if prefs.vacation_mode:
        return False
    if (
        not prefs.weekend_notifications
        and severity != AlertPriority.CRITICAL
        and at.astimezone(resolve_zone(tz_name)).weekday() >= 5
    ):
        return False
    if not prefs.allows(severity, channel):
        return False
    return is_on_call(recipient.on_call_schedule, at)


@dataclass
class DeliveryTarget:
    """One (channel, address) pair to dispatch to."""
    channel_type: ChannelType
    address: str
    recipient_key: str
    config: Optional[ChannelConfiguration] = None
    recipient_id: Optional[str] = None
    max_per_hour: Optional[int] = None


@dataclass
class RoutingDecision:
    targets: list[DeliveryTarget] = field(default_factory=list)
    suppressed_reason: Optional[str] = None

    @property
    def suppressed(self) -> bool:
        return self.suppressed_reason is not None


def _channel_addresses(config: ChannelConfiguration) -> list[str]:
    if isinstance(config, EmailChannelConfig):
        return list(config.email_addresses)
    if isinstance(config, SmsChannelConfig):
        return list(config.phone_numbers)
    if isinstance(config, WebhookChannelConfig):
        return [config.webhook_url] if config.webhook_url else []
    return []


class NotificationRouter:
    """Resolves delivery targets for alerts and escalation stages.

    Reads delivery history through the injected store; never writes it.
    """

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    def route(
        self,
        settings: NotificationSettings,
        alert: AlertInstance,
        at: datetime,
    ) -> RoutingDecision:
        """Resolve targets for an alert's initial notification.

        Args:
            settings: Notification settings of the alert's configuration.
            alert: Alert to deliver.
            at: Delivery instant.

        Returns:
            RoutingDecision; suppressed decisions carry no targets.
        """
        if alert.suppressed:
            return self._suppress(alert, "maintenance window")

        channels = [c for c in settings.channels if c.accepts(alert.severity)]
        if not channels:
            return self._suppress(alert, "no channel accepts this severity")

        if is_quiet_time(settings.quiet_hours, alert.severity, alert.id, at):
            return self._suppress(alert, "quiet hours")

        if self._in_similar_cooldown(settings, alert, at):
            return self._suppress(alert, "similar alert cooldown")

        targets: list[DeliveryTarget] = []
        seen: set[tuple[ChannelType, str]] = set()
        for channel in channels:
            for target in self._channel_targets(settings, channel, alert, at):
                key = (target.channel_type, target.address)
                if key not in seen:
                    seen.add(key)
                    targets.append(target)

        allowed = self._apply_frequency_limits(settings, targets, at)
        if targets and not allowed:
            return self._suppress(alert, "frequency limit")
        return RoutingDecision(targets=allowed)

    def route_stage(
        self,
        settings: Optional[NotificationSettings],
        stage: EscalationStage,
    ) -> list[DeliveryTarget]:
        """Resolve targets for an escalation stage.

        Stage recipients are recipient ids looked up in `settings`; an id
        with no matching recipient is used as the address itself. Quiet
        hours and frequency limits do not apply to escalations.
        """
        settings = settings or NotificationSettings()
        configured = {c.type: c for c in settings.channels}
        targets: list[DeliveryTarget] = []
        seen: set[tuple[ChannelType, str]] = set()

        for channel_type in stage.channels:
            channel = configured.get(channel_type, NotificationChannel(type=channel_type))
            config = channel.resolved_configuration()

            if channel_type == ChannelType.WEBHOOK:
                candidates = [
                    DeliveryTarget(channel_type, url, url, config)
                    for url in _channel_addresses(config)
                ]
            else:
                candidates = []
                for recipient_id in stage.recipients:
                    recipient = settings.recipient_by_id(recipient_id)
                    if recipient is None:
                        address = recipient_id
                    else:
                        contact = recipient.contact_for(channel_type)
                        if contact is None:
                            logger.debug(
                                "Recipient %s has no verified %s contact",
                                recipient_id, channel_type.value,
                            )
                            continue
                        address = contact.value
                    candidates.append(DeliveryTarget(
                        channel_type, address, recipient_id, config, recipient_id,
                    ))

            for target in candidates:
                key = (target.channel_type, target.address)
                if key not in seen:
                    seen.add(key)
                    targets.append(target)

        return targets

    def _channel_targets(
        self,
        settings: NotificationSettings,
        channel: NotificationChannel,
        alert: AlertInstance,
        at: datetime,
    ) -> list[DeliveryTarget]:
        config = channel.resolved_configuration()

        if channel.type == ChannelType.WEBHOOK:
            return [
                DeliveryTarget(channel.type, url, url, config)
                for url in _channel_addresses(config)
            ]

        targets: list[DeliveryTarget] = []
        for recipient in settings.recipients:
            if not recipient_eligible(
                recipient, alert.severity, channel.type, at, settings.quiet_hours.timezone,
            ):
                continue
            contact = recipient.contact_for(channel.type)
            if contact is None:
                continue
            targets.append(DeliveryTarget(
                channel_type=channel.type,
                address=contact.value,
                recipient_key=recipient.id,
                config=config,
                recipient_id=recipient.id,
                max_per_hour=recipient.notification_preferences.max_notifications_per_hour,
            ))

        for address in _channel_addresses(config):
            targets.append(DeliveryTarget(channel.type, address, address, config))
        return targets

    def _in_similar_cooldown(
        self,
        settings: NotificationSettings,
        alert: AlertInstance,
        at: datetime,
    ) -> bool:
        minutes = settings.frequency_limits.cooldown_between_similar
        if minutes <= 0 or alert.severity == AlertPriority.CRITICAL:
            return False
        last = self.store.last_delivery_for(
            alert.configuration_id, alert.rule_id, exclude_alert_id=alert.id,
        )
        return last is not None and at - last < timedelta(minutes=minutes)

    def _apply_frequency_limits(
        self,
        settings: NotificationSettings,
        targets: list[DeliveryTarget],
        at: datetime,
    ) -> list[DeliveryTarget]:
        """Drop targets whose recipient already reached an hourly or daily cap."""
        limits = settings.frequency_limits
        verdicts: dict[str, bool] = {}
        allowed: list[DeliveryTarget] = []

        for target in targets:
            key = target.recipient_key
            if key not in verdicts:
                last_hour = self.store.count_alerts(key, at - timedelta(hours=1))
                last_day = self.store.count_alerts(key, at - timedelta(days=1))
                hourly_cap = limits.max_alerts_per_hour
                if target.max_per_hour is not None:
                    hourly_cap = min(hourly_cap, target.max_per_hour)
                verdicts[key] = last_hour < hourly_cap and last_day < limits.max_alerts_per_day
                if not verdicts[key]:
                    logger.info(
                        "Frequency limit reached for %s (%d alerts/h, %d/day)",
                        key, last_hour, last_day,
                    )
            if verdicts[key]:
                allowed.append(target)
        return allowed

    @staticmethod
    def _suppress(alert: AlertInstance, reason: str) -> RoutingDecision:
        logger.info("Notifications for alert %s suppressed: %s", alert.id, reason)
        return RoutingDecision(suppressed_reason=reason)

"""Tests for notification routing and delivery."""

import time
from datetime import datetime, timedelta, timezone

import pytest

from src.alerts.channels import WebhookAdapter
from src.alerts.config import AlertPriority, ChannelType, NotificationStatus
from src.alerts.delivery import NotificationDeliveryService
from src.alerts.models import (
    ContactMethod,
    FrequencyLimits,
    NotificationChannel,
    NotificationLog,
    NotificationPreferences,
    NotificationRecipient,
    OnCallSchedule,
    QuietHours,
    SchedulePeriod,
    WebhookChannelConfig,
)
from src.alerts.routing import in_window, is_on_call, is_quiet_time, parse_hhmm
from src.alerts.store import InMemoryAlertStore

from conftest import (
    NOW,
    FailingAdapter,
    RecordingAdapter,
    StallingAdapter,
    StepClock,
    make_alert,
    make_notification_settings,
)


NIGHT = datetime(2024, 3, 6, 3, 30, tzinfo=timezone.utc)      # 22:30 in New York
SATURDAY = datetime(2024, 3, 9, 12, 0, tzinfo=timezone.utc)


def _service(adapters, app_settings, clock, **kwargs):
    return NotificationDeliveryService(
        adapters=adapters,
        store=kwargs.pop("store", InMemoryAlertStore()),
        app_settings=app_settings,
        clock=clock,
        **kwargs,
    )


def _recipients(entries, channel=None):
    return sorted(e.recipient for e in entries if channel is None or e.channel == channel)


class TestRoutingHelpers:
    """Test quiet-hours windows and on-call schedules."""

    def test_window_wraps_midnight(self):
        start, end = parse_hhmm("22:00"), parse_hhmm("07:00")
        assert in_window(parse_hhmm("23:15"), start, end)
        assert in_window(parse_hhmm("06:59"), start, end)
        assert not in_window(parse_hhmm("07:00"), start, end)
        assert not in_window(parse_hhmm("12:00"), start, end)

    def test_empty_window(self):
        assert not in_window(parse_hhmm("10:00"), parse_hhmm("10:00"), parse_hhmm("10:00"))

    def test_quiet_time_uses_configured_timezone(self):
        quiet = QuietHours(enabled=True, timezone="America/New_York")
        assert is_quiet_time(quiet, AlertPriority.MEDIUM, "a1", NIGHT)
        assert not is_quiet_time(quiet, AlertPriority.MEDIUM, "a1", NOW)

    def test_quiet_time_bypasses(self):
        quiet = QuietHours(enabled=True, timezone="America/New_York", exceptions=["high", "a2"])
        assert not is_quiet_time(quiet, AlertPriority.CRITICAL, "a1", NIGHT)
        assert not is_quiet_time(quiet, AlertPriority.HIGH, "a1", NIGHT)
        assert not is_quiet_time(quiet, AlertPriority.LOW, "a2", NIGHT)

    def test_weekend_override(self):
        quiet = QuietHours(enabled=True, weekend_override=True)
        assert is_quiet_time(quiet, AlertPriority.LOW, "a1", SATURDAY)
        assert not is_quiet_time(quiet, AlertPriority.LOW, "a1", NOW)

    def test_invalid_quiet_hours_are_not_quiet(self):
        assert not is_quiet_time(
            QuietHours(enabled=True, timezone="Mars/Olympus"), AlertPriority.LOW, "a1", NIGHT,
        )
        assert not is_quiet_time(
            QuietHours(enabled=True, start_time="25:99", timezone="America/New_York"),
            AlertPriority.LOW, "a1", NIGHT,
        )

    def test_invalid_on_call_entries_tolerated(self):
        schedule = OnCallSchedule(timezone="Mars/Olympus", schedules=[
            SchedulePeriod(days_of_week=[2], start_time="8am", end_time="17:00"),
            SchedulePeriod(days_of_week=[2], start_time="08:00", end_time="17:00"),
        ])
        # unknown zone falls back to UTC; the malformed period is skipped
        assert is_on_call(schedule, NOW)
        assert not is_on_call(schedule, datetime(2024, 3, 5, 20, 0, tzinfo=timezone.utc))

    def test_on_call_schedule(self):
        # Tuesday 08:00-17:00 and an overnight Monday shift
        schedule = OnCallSchedule(schedules=[
            SchedulePeriod(days_of_week=[2], start_time="08:00", end_time="17:00"),
            SchedulePeriod(days_of_week=[1], start_time="22:00", end_time="06:00"),
        ])
        assert is_on_call(schedule, NOW)
        assert is_on_call(schedule, datetime(2024, 3, 5, 5, 0, tzinfo=timezone.utc))
        assert not is_on_call(schedule, datetime(2024, 3, 5, 20, 0, tzinfo=timezone.utc))
        assert is_on_call(None, NOW)


class TestSendAlertNotifications:
    """Test initial notification fan-out."""

    def test_all_channels_and_recipients(self, adapters, app_settings, clock):
        service = _service(adapters, app_settings, clock)
        entries = service.send_alert_notifications(make_notification_settings(), make_alert())

        assert len(entries) == 5
        assert all(e.status == NotificationStatus.SENT for e in entries)
        assert _recipients(entries, ChannelType.EMAIL) == ["ce@example.com", "fm@example.com"]
        assert _recipients(entries, ChannelType.SMS) == ["+15550001111", "+15550002222"]
        assert _recipients(entries, ChannelType.WEBHOOK) == ["https://hooks.example.com/alerts"]
        assert [e.sent_at for e in entries] == sorted(e.sent_at for e in entries)
        assert all(e.escalation_level == 0 and e.message_id for e in entries)

    def test_payload_carries_template_and_channel_config(self, adapters, app_settings, clock):
        service = _service(adapters, app_settings, clock)
        alert = make_alert()
        service.send_alert_notifications(make_notification_settings(), alert)

        _, payload = adapters[ChannelType.WEBHOOK].sent[0]
        assert payload.template.subject == f"CRITICAL Alert: {alert.title}"
        assert f"/alerts/{alert.id}" in payload.template.variables["dashboard_url"]
        assert isinstance(payload.channel_config, WebhookChannelConfig)
        assert payload.channel_config.webhook_url == "https://hooks.example.com/alerts"

    def test_custom_message_template(self, adapters, app_settings, clock):
        service = _service(adapters, app_settings, clock)
        settings = make_notification_settings(
            custom_message_template="Runbook for $alert_id: check chillers",
        )
        alert = make_alert()
        service.send_alert_notifications(settings, alert)

        _, payload = adapters[ChannelType.EMAIL].sent[0]
        assert f"Runbook for {alert.id}: check chillers" in payload.template.body

    def test_quiet_hours_hold_medium_but_not_critical(self, adapters, app_settings):
        settings = make_notification_settings(
            quiet_hours=QuietHours(
                enabled=True, start_time="22:00", end_time="07:00",
                timezone="America/New_York",
            ),
        )
        service = _service(adapters, app_settings, StepClock(NIGHT))

        assert service.send_alert_notifications(settings, make_alert(AlertPriority.MEDIUM)) == []
        assert all(not a.sent for a in adapters.values())

        entries = service.send_alert_notifications(settings, make_alert(AlertPriority.CRITICAL))
        assert len(entries) == 5

    @pytest.mark.parametrize("quiet_hours", [
        QuietHours(enabled=True, timezone="Mars/Olympus"),
        QuietHours(enabled=True, start_time="25:99", end_time="07:00"),
    ])
    def test_invalid_quiet_hours_still_deliver(self, adapters, app_settings, quiet_hours):
        settings = make_notification_settings(quiet_hours=quiet_hours)
        service = _service(adapters, app_settings, StepClock(NIGHT))

        entries = service.send_alert_notifications(settings, make_alert(AlertPriority.MEDIUM))
        assert len(entries) == 5
        assert all(e.is_sent for e in entries)

    def test_failing_channel_does_not_block_others(self, adapters, app_settings, clock):
        adapters[ChannelType.EMAIL] = FailingAdapter(ChannelType.EMAIL)
        settings = make_notification_settings()
        settings.recipients = settings.recipients[:1]
        service = _service(adapters, app_settings, clock)

        entries = service.send_alert_notifications(settings, make_alert())

        failed = [e for e in entries if e.status == NotificationStatus.FAILED]
        sent = [e for e in entries if e.is_sent]
        assert len(failed) == 1
        assert failed[0].channel == ChannelType.EMAIL
        assert "provider unavailable" in failed[0].error_message
        assert {e.channel for e in sent} == {ChannelType.SMS, ChannelType.WEBHOOK}

    def test_stalled_channel_times_out(self, adapters, app_settings, clock, stalling_adapter):
        adapters[ChannelType.WEBHOOK] = stalling_adapter
        service = _service(adapters, app_settings, clock, channel_timeout=0.2)

        started = time.monotonic()
        entries = service.send_alert_notifications(make_notification_settings(), make_alert())
        elapsed = time.monotonic() - started

        assert elapsed < 2.0
        webhook = [e for e in entries if e.channel == ChannelType.WEBHOOK]
        assert len(webhook) == 1
        assert webhook[0].status == NotificationStatus.FAILED
        assert "Timed out" in webhook[0].error_message
        assert sum(e.is_sent for e in entries) == 4

    def test_queued_jobs_reported_as_not_dispatched(self, adapters, app_settings, clock):
        for channel in ChannelType:
            adapters[channel] = StallingAdapter(channel)
        settings = make_notification_settings()
        settings.recipients = settings.recipients[:1]
        service = _service(adapters, app_settings, clock, channel_timeout=0.2, max_workers=1)

        try:
            entries = service.send_alert_notifications(settings, make_alert())
        finally:
            for adapter in adapters.values():
                adapter.release.set()

        errors = sorted(e.error_message.split(" after")[0] for e in entries)
        assert errors == [
            "Not dispatched before timeout", "Not dispatched before timeout", "Timed out",
        ]
        assert all(e.status == NotificationStatus.FAILED for e in entries)

    def test_missing_adapter_recorded_as_failure(self, app_settings, clock):
        adapters = {ChannelType.EMAIL: RecordingAdapter(ChannelType.EMAIL)}
        service = _service(adapters, app_settings, clock)

        entries = service.send_alert_notifications(make_notification_settings(), make_alert())

        sms = [e for e in entries if e.channel == ChannelType.SMS]
        assert sms and all(e.status == NotificationStatus.FAILED for e in sms)
        assert "No adapter" in sms[0].error_message

    def test_suppressed_alert_is_not_sent(self, adapters, app_settings, clock):
        service = _service(adapters, app_settings, clock)
        alert = make_alert(AlertPriority.HIGH, suppressed=True)
        assert service.send_alert_notifications(make_notification_settings(), alert) == []

    def test_channel_priority_filter(self, adapters, app_settings, clock):
        settings = make_notification_settings()
        settings.channels[0].priority_filter = [AlertPriority.CRITICAL]
        service = _service(adapters, app_settings, clock)

        entries = service.send_alert_notifications(settings, make_alert(AlertPriority.HIGH))
        assert ChannelType.EMAIL not in {e.channel for e in entries}
        assert len(entries) == 3

    def test_channel_configured_addresses(self, adapters, app_settings, clock):
        settings = make_notification_settings()
        settings.channels[0] = NotificationChannel(
            type=ChannelType.EMAIL,
            configuration={"email_addresses": ["ops@example.com", "fm@example.com"]},
        )
        service = _service(adapters, app_settings, clock)

        entries = service.send_alert_notifications(settings, make_alert())
        assert _recipients(entries, ChannelType.EMAIL) == [
            "ce@example.com", "fm@example.com", "ops@example.com",
        ]


class TestRecipientEligibility:
    """Test per-recipient preferences and contact methods."""

    def test_vacation_mode(self, adapters, app_settings, clock):
        settings = make_notification_settings()
        settings.recipients[1].notification_preferences = NotificationPreferences(vacation_mode=True)
        service = _service(adapters, app_settings, clock)

        entries = service.send_alert_notifications(settings, make_alert())
        assert "ce@example.com" not in _recipients(entries)
        assert "+15550002222" not in _recipients(entries)

    def test_channels_by_priority(self, adapters, app_settings, clock):
        settings = make_notification_settings()
        settings.recipients[0].notification_preferences = NotificationPreferences(
            channels_by_priority={AlertPriority.CRITICAL: [ChannelType.SMS]},
        )
        service = _service(adapters, app_settings, clock)

        entries = service.send_alert_notifications(settings, make_alert())
        assert "fm@example.com" not in _recipients(entries)
        assert "+15550001111" in _recipients(entries)

    def test_weekend_notifications_off(self, adapters, app_settings):
        settings = make_notification_settings()
        settings.recipients[1].notification_preferences = NotificationPreferences(
            weekend_notifications=False,
        )
        service = _service(adapters, app_settings, StepClock(SATURDAY))

        medium = service.send_alert_notifications(settings, make_alert(AlertPriority.MEDIUM))
        assert "ce@example.com" not in _recipients(medium)

        critical = service.send_alert_notifications(settings, make_alert(AlertPriority.CRITICAL))
        assert "ce@example.com" in _recipients(critical)

    def test_unverified_contact_skipped(self, adapters, app_settings, clock):
        settings = make_notification_settings(recipients=[
            NotificationRecipient(id="tech", contact_methods=[
                ContactMethod(ChannelType.EMAIL, "tech@example.com", verified=False),
                ContactMethod(ChannelType.SMS, "+15550003333"),
            ]),
        ])
        service = _service(adapters, app_settings, clock)

        entries = service.send_alert_notifications(settings, make_alert())
        assert _recipients(entries, ChannelType.EMAIL) == []
        assert _recipients(entries, ChannelType.SMS) == ["+15550003333"]


class TestFrequencyLimits:
    """Test hourly caps and similar-alert cooldown."""

    def test_hourly_cap_blocks_everyone(self, adapters, app_settings, clock):
        settings = make_notification_settings(frequency_limits=FrequencyLimits(max_alerts_per_hour=1))
        service = _service(adapters, app_settings, clock)

        assert len(service.deliver(settings, make_alert())) == 5

        second = make_alert()
        decision = service.router.route(settings, second, clock())
        assert decision.suppressed_reason == "frequency limit"
        assert service.send_alert_notifications(settings, second) == []

    def test_cap_counts_alerts_not_channels(self, adapters, app_settings, clock):
        settings = make_notification_settings(
            channels=[
                NotificationChannel(type=ChannelType.EMAIL),
                NotificationChannel(type=ChannelType.SMS),
            ],
            recipients=make_notification_settings().recipients[:1],
            frequency_limits=FrequencyLimits(max_alerts_per_hour=2),
        )
        service = _service(adapters, app_settings, clock)

        assert len(service.deliver(settings, make_alert(AlertPriority.HIGH))) == 2

        second = service.deliver(settings, make_alert(AlertPriority.HIGH))
        assert _recipients(second) == ["+15550001111", "fm@example.com"]

        assert service.send_alert_notifications(settings, make_alert(AlertPriority.HIGH)) == []

    def test_recipient_hourly_preference(self, adapters, app_settings, clock):
        settings = make_notification_settings()
        settings.recipients[0].notification_preferences = NotificationPreferences(
            max_notifications_per_hour=1,
        )
        service = _service(adapters, app_settings, clock)
        service.deliver(settings, make_alert())

        entries = service.send_alert_notifications(settings, make_alert())
        recipients = _recipients(entries)
        assert "fm@example.com" not in recipients
        assert "ce@example.com" in recipients

    def test_failed_sends_do_not_count(self, adapters, app_settings, clock):
        for channel in ChannelType:
            adapters[channel] = FailingAdapter(channel)
        settings = make_notification_settings(frequency_limits=FrequencyLimits(max_alerts_per_hour=1))
        service = _service(adapters, app_settings, clock)

        service.send_alert_notifications(settings, make_alert())
        assert len(service.send_alert_notifications(settings, make_alert())) == 5

    def test_similar_alert_cooldown(self, adapters, app_settings, clock):
        settings = make_notification_settings(
            frequency_limits=FrequencyLimits(cooldown_between_similar=60),
        )
        service = _service(adapters, app_settings, clock)

        assert service.deliver(settings, make_alert(AlertPriority.MEDIUM))
        clock.advance(minutes=10)
        assert service.send_alert_notifications(settings, make_alert(AlertPriority.MEDIUM)) == []
        assert service.send_alert_notifications(settings, make_alert(AlertPriority.CRITICAL))

        clock.advance(minutes=90)
        assert service.send_alert_notifications(settings, make_alert(AlertPriority.MEDIUM))


class TestRetryFailedNotifications:
    """Test retry with exponential backoff."""

    def test_retry_after_backoff(self, adapters, app_settings, clock):
        recording = adapters[ChannelType.EMAIL]
        adapters[ChannelType.EMAIL] = FailingAdapter(ChannelType.EMAIL)
        service = _service(adapters, app_settings, clock)
        alert = make_alert()
        service.deliver(make_notification_settings(), alert)

        # backoff for the first retry is one minute
        assert service.retry_failed_notifications(alert) == []

        clock.advance(minutes=2)
        adapters[ChannelType.EMAIL] = recording
        retried = service.retry_failed_notifications(alert)

        assert len(retried) == 2
        assert all(e.channel == ChannelType.EMAIL and e.is_sent for e in retried)
        assert all(e.retry_count == 1 for e in retried)
        assert all(e.sent_at > alert.last_logged_at for e in retried)

    def test_retry_limit(self, adapters, app_settings, clock):
        service = _service(adapters, app_settings, clock)
        alert = make_alert()
        exhausted = NotificationLog(
            channel=ChannelType.SMS, recipient="+15550001111",
            sent_at=NOW - timedelta(hours=1), status=NotificationStatus.FAILED,
            retry_count=3, alert_id=alert.id,
        )
        alert.append_notifications([exhausted])
        assert service.retry_failed_notifications(alert) == []

    def test_only_latest_attempt_is_retried(self, adapters, app_settings, clock):
        service = _service(adapters, app_settings, clock)
        alert = make_alert()
        alert.append_notifications([
            NotificationLog(
                channel=ChannelType.SMS, recipient="+15550001111",
                sent_at=NOW - timedelta(minutes=30), status=NotificationStatus.FAILED,
                alert_id=alert.id,
            ),
            NotificationLog(
                channel=ChannelType.SMS, recipient="+15550001111",
                sent_at=NOW - timedelta(minutes=20), status=NotificationStatus.SENT,
                retry_count=1, alert_id=alert.id,
            ),
        ])
        assert service.retry_failed_notifications(alert) == []


class TestDeliver:
    """Test the deliver helper that records entries on the alert."""

    def test_deliver_appends_sorted_log(self, adapters, app_settings, clock):
        service = _service(adapters, app_settings, clock)
        alert = make_alert()

        entries = service.deliver(make_notification_settings(), alert)

        assert alert.notification_log == entries
        assert alert.last_sent_at == entries[-1].sent_at
        assert all(e.alert_id == alert.id for e in entries)

    def test_store_records_deliveries(self, adapters, app_settings, clock):
        store = InMemoryAlertStore()
        service = _service(adapters, app_settings, clock, store=store)
        alert = make_alert()
        service.deliver(make_notification_settings(), alert)

        # one alert over email and SMS counts once
        assert store.count_alerts("facility_manager", NOW - timedelta(hours=1)) == 1
        assert store.last_delivery_for(alert.configuration_id, alert.rule_id) is not None
        assert store.last_delivery_for(
            alert.configuration_id, alert.rule_id, exclude_alert_id=alert.id,
        ) is None

    def test_close_closes_adapters(self, adapters, app_settings, clock):
        adapters[ChannelType.WEBHOOK] = WebhookAdapter(signing_secret="")
        with _service(adapters, app_settings, clock) as service:
            assert service.adapters[ChannelType.WEBHOOK] is adapters[ChannelType.WEBHOOK]
        assert adapters[ChannelType.WEBHOOK]._client.is_closed


@pytest.mark.parametrize("severity", [AlertPriority.LOW, AlertPriority.HIGH])
def test_sms_text_fits_one_segment(adapters, app_settings, clock, severity):
    service = _service(adapters, app_settings, clock)
    alert = make_alert(severity, description="x" * 400)
    service.send_alert_notifications(make_notification_settings(), alert)

    _, payload = adapters[ChannelType.SMS].sent[0]
    assert len(payload.template.sms_text()) <= 160

"""Pytest configuration and shared fixtures."""

import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.alerts.channels.base import ChannelAdapter, DeliveryResult  # noqa: E402
from src.alerts.config import (  # noqa: E402
    AggregationFunction,
    AlertPriority,
    ChannelType,
    ComparisonOperator,
    LogicalOperator,
    ReadingQuality,
)
from src.alerts.models import (  # noqa: E402
    AlertCondition,
    AlertConfiguration,
    AlertInstance,
    AlertRule,
    ContactMethod,
    EvaluationContext,
    MetricSelector,
    NotificationChannel,
    NotificationRecipient,
    NotificationSettings,
    SensorReading,
    Threshold,
    TimeAggregation,
)
from src.settings import Settings  # noqa: E402


# ── Fakes ────────────────────────────────────────────────────────────


class StepClock:
    """Deterministic clock; every call moves time forward by `step`."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            value = self.current
            self.current = self.current + self.step
            return value

    def advance(self, **kwargs) -> None:
        with self._lock:
            self.current = self.current + timedelta(**kwargs)


class RecordingAdapter(ChannelAdapter):
    """Accepts every send and remembers it."""

    def __init__(self, channel_type: ChannelType):
        self.channel_type = channel_type
        self.sent: list[tuple[str, object]] = []
        self._lock = threading.Lock()

    def send(self, recipient, payload):
        with self._lock:
            self.sent.append((recipient, payload))
            n = len(self.sent)
        return DeliveryResult(success=True, message_id=f"{self.channel_type.value}-{n}")

    def validate_recipient(self, recipient):
        return True


class FailingAdapter(RecordingAdapter):
    """Raises on every send, like a provider outage."""

    def send(self, recipient, payload):
        raise ConnectionError(f"{self.channel_type.value} provider unavailable")


class StallingAdapter(RecordingAdapter):
    """Blocks until released, like a provider that never answers."""

    def __init__(self, channel_type: ChannelType):
        super().__init__(channel_type)
        self.release = threading.Event()

    def send(self, recipient, payload):
        self.release.wait(timeout=5)
        return super().send(recipient, payload)


# ── Builders ─────────────────────────────────────────────────────────

NOW = datetime(2024, 3, 5, 14, 0, tzinfo=timezone.utc)  # Tuesday afternoon


def energy_condition(threshold: float = 1500.0, filters=None) -> AlertCondition:
    return AlertCondition(
        id="cond_energy",
        metric=MetricSelector(
            type="energy_consumption", sensor_id="energy_meter_01",
            units="kWh", display_name="Main energy meter",
        ),
        operator=ComparisonOperator.GREATER_THAN,
        threshold=Threshold(value=threshold),
        time_aggregation=TimeAggregation(
            function=AggregationFunction.SUM, period=60, minimum_data_points=12,
        ),
        filters=list(filters or []),
    )


def occupancy_condition(threshold: float = 50.0, filters=None) -> AlertCondition:
    return AlertCondition(
        id="cond_occupancy",
        metric=MetricSelector(
            type="occupancy", sensor_id="occupancy_sensor_01",
            units="people", display_name="Lobby occupancy",
        ),
        operator=ComparisonOperator.GREATER_THAN,
        threshold=Threshold(value=threshold),
        time_aggregation=TimeAggregation(
            function=AggregationFunction.AVERAGE, period=15, minimum_data_points=3,
        ),
        filters=list(filters or []),
    )


def make_configuration(
    config_id: str = "cfg_energy",
    conditions=None,
    priority: AlertPriority = AlertPriority.CRITICAL,
    cooldown: int = 30,
    **kwargs,
) -> AlertConfiguration:
    rule = AlertRule(
        id=f"{config_id}_rule",
        name="Peak energy with occupancy",
        conditions=conditions if conditions is not None else [
            energy_condition(), occupancy_condition(),
        ],
        priority=priority,
        logical_operator=LogicalOperator.AND,
        cooldown_period=cooldown,
    )
    return AlertConfiguration(id=config_id, name="HQ Building", rules=[rule], **kwargs)


def energy_readings(now: datetime = NOW, total: float = 1520.0, quality=ReadingQuality.GOOD) -> list[SensorReading]:
    """Twelve readings in the last hour summing to `total`."""
    base = round(total / 12, 3)
    values = [base] * 11 + [round(total - base * 11, 3)]
    return [
        SensorReading(
            sensor_id="energy_meter_01",
            timestamp=now - timedelta(minutes=55 - 5 * i),
            value=value,
            unit="kWh",
            quality=quality,
        )
        for i, value in enumerate(values)
    ]


def occupancy_readings(now: datetime = NOW, values=(65, 85, 120), quality=ReadingQuality.GOOD) -> list[SensorReading]:
    return [
        SensorReading(
            sensor_id="occupancy_sensor_01",
            timestamp=now - timedelta(minutes=10 - 5 * i),
            value=float(value),
            unit="people",
            quality=quality,
        )
        for i, value in enumerate(values)
    ]


def make_context(now: datetime = NOW, readings=None, **kwargs) -> EvaluationContext:
    if readings is None:
        readings = energy_readings(now) + occupancy_readings(now)
    return EvaluationContext(current_time=now, sensor_readings=readings, **kwargs)


def make_alert(
    severity: AlertPriority = AlertPriority.CRITICAL,
    triggered_at: datetime = NOW,
    config_id: str = "cfg_energy",
    **kwargs,
) -> AlertInstance:
    defaults = dict(
        configuration_id=config_id,
        rule_id=f"{config_id}_rule",
        severity=severity,
        title="Peak energy with occupancy - HQ Building",
        description="Peak energy with occupancy: Multiple conditions triggered (2/2)",
        triggered_at=triggered_at,
    )
    defaults.update(kwargs)
    return AlertInstance(**defaults)


def make_notification_settings(**kwargs) -> NotificationSettings:
    """Email + SMS + webhook channels and two recipients."""
    defaults = dict(
        channels=[
            NotificationChannel(type=ChannelType.EMAIL),
            NotificationChannel(type=ChannelType.SMS),
            NotificationChannel(
                type=ChannelType.WEBHOOK,
                configuration={"webhook_url": "https://hooks.example.com/alerts"},
            ),
        ],
        recipients=[
            NotificationRecipient(
                id="facility_manager",
                name="Facility Manager",
                contact_methods=[
                    ContactMethod(ChannelType.EMAIL, "fm@example.com", primary=True),
                    ContactMethod(ChannelType.SMS, "+15550001111"),
                ],
            ),
            NotificationRecipient(
                id="chief_engineer",
                name="Chief Engineer",
                contact_methods=[
                    ContactMethod(ChannelType.EMAIL, "ce@example.com"),
                    ContactMethod(ChannelType.SMS, "+15550002222"),
                ],
            ),
        ],
    )
    defaults.update(kwargs)
    return NotificationSettings(**defaults)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return StepClock(NOW)


@pytest.fixture
def app_settings():
    return Settings(
        dashboard_url="https://app.example.com/dashboard",
        channel_timeout_seconds=2.0,
        delivery_workers=4,
        webhook_signing_secret="",
    )


@pytest.fixture
def adapters():
    return {channel: RecordingAdapter(channel) for channel in ChannelType}


@pytest.fixture
def stalling_adapter():
    adapter = StallingAdapter(ChannelType.WEBHOOK)
    yield adapter
    adapter.release.set()

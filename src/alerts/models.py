"""Alert evaluation & notification data models.

Dataclasses for configurations, rules, conditions, evaluation context,
triggered alert instances and their notification audit trail.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from typing import Any, Optional, Union
import uuid

from src.alerts.config import (
    AggregationFunction,
    AlertInstanceStatus,
    AlertPriority,
    ChannelType,
    ComparisonOperator,
    ConfigurationStatus,
    ImpactLevel,
    LogicalOperator,
    NotificationStatus,
    ReadingQuality,
)
from src.alerts.exceptions import ConfigurationError, InvalidTransitionError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


# ── Sensor data ──────────────────────────────────────────────────────


@dataclass
class SensorReading:
    """A single time-series reading from a building sensor."""
    sensor_id: str
    timestamp: datetime
    value: float
    unit: str = ""
    quality: ReadingQuality = ReadingQuality.GOOD

    def field_value(self, name: str) -> Any:
        """Look up a reading attribute by name for filter predicates."""
        value = getattr(self, name, None)
        if isinstance(value, ReadingQuality):
            return value.value
        return value


@dataclass
class EvaluationContext:
    """Inputs for one evaluation pass.

    Attributes:
        current_time: Instant the evaluation is performed for.
        sensor_readings: Candidate readings for all conditions.
        historical_data: Older readings used for baselines and anomaly scoring.
        weather_data: Optional weather snapshot (annotation only).
        occupancy_data: Optional occupancy snapshot (annotation only).
        system_status: Optional building system status (annotation only).
    """
    current_time: datetime
    sensor_readings: list[SensorReading] = field(default_factory=list)
    historical_data: list[SensorReading] = field(default_factory=list)
    weather_data: Optional[dict[str, Any]] = None
    occupancy_data: Optional[dict[str, Any]] = None
    system_status: Optional[Any] = None

    @property
    def has_sensor_data(self) -> bool:
        return bool(self.sensor_readings)


# ── Rules and conditions ─────────────────────────────────────────────


@dataclass
class MetricSelector:
    """Which readings a condition looks at."""
    type: str
    sensor_id: Optional[str] = None
    units: str = ""
    display_name: str = ""


@dataclass
class Threshold:
    """Threshold for a comparison.

    `secondary_value` bounds range operators, `baseline_period` feeds
    percentage_change and `confidence_level` is used by anomaly_detected.
    """
    value: float
    secondary_value: Optional[float] = None
    baseline_period: Optional[str] = None
    confidence_level: Optional[float] = None


@dataclass
class TimeAggregation:
    """Aggregation applied to the readings inside a condition's window."""
    function: AggregationFunction = AggregationFunction.AVERAGE
    period: int = 15                 # minutes
    minimum_data_points: int = 1


@dataclass
class MetricFilter:
    """Field predicate applied to raw readings, e.g. quality equals good."""
    field: str
    operator: str
    value: Any


@dataclass
class AlertCondition:
    """Single metric/operator/threshold check."""
    metric: MetricSelector
    operator: ComparisonOperator
    threshold: Threshold
    time_aggregation: TimeAggregation = field(default_factory=TimeAggregation)
    filters: list[MetricFilter] = field(default_factory=list)
    id: str = field(default_factory=_new_id)


@dataclass
class AlertRule:
    """Conditions joined by a logical operator, with priority and cooldown."""
    id: str
    name: str
    conditions: list[AlertCondition] = field(default_factory=list)
    description: str = ""
    enabled: bool = True
    priority: AlertPriority = AlertPriority.MEDIUM
    logical_operator: LogicalOperator = LogicalOperator.AND
    evaluation_window: int = 15      # minutes
    cooldown_period: int = 30        # minutes
    suppress_duplicates: bool = True
    tags: list[str] = field(default_factory=list)


@dataclass
class BusinessImpact:
    level: ImpactLevel = ImpactLevel.LOW
    estimated_cost_per_hour: Optional[float] = None
    affected_occupants: Optional[int] = None
    compliance_risk: bool = False
    safety_risk: bool = False


@dataclass
class MaintenanceWindow:
    """Declared maintenance period during which non-critical alerts are muted."""
    enabled: bool = False
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    reason: str = ""

    def is_active(self, at: datetime) -> bool:
        if not self.enabled:
            return False
        if self.start is not None and at < self.start:
            return False
        if self.end is not None and at >= self.end:
            return False
        return True


@dataclass
class AlertMetadata:
    """Free-form configuration metadata used by severity and suppression logic."""
    category: str = "operational"
    severity_auto_adjust: bool = False
    business_impact: BusinessImpact = field(default_factory=BusinessImpact)
    maintenance_suppression: Optional[MaintenanceWindow] = None
    timezone: str = "UTC"
    affected_systems: list[str] = field(default_factory=list)
    affected_locations: list[str] = field(default_factory=list)
    runbook_url: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    custom_fields: dict[str, Any] = field(default_factory=dict)


# ── Notification settings ────────────────────────────────────────────


@dataclass
class EmailChannelConfig:
    email_addresses: list[str] = field(default_factory=list)
    email_template: Optional[str] = None


@dataclass
class SmsChannelConfig:
    phone_numbers: list[str] = field(default_factory=list)
    sms_provider: str = "twilio"


@dataclass
class WebhookChannelConfig:
    webhook_url: str = ""
    webhook_method: str = "POST"
    webhook_headers: dict[str, str] = field(default_factory=dict)
    webhook_timeout: Optional[float] = None   # seconds
    webhook_retry_attempts: int = 0


ChannelConfiguration = Union[EmailChannelConfig, SmsChannelConfig, WebhookChannelConfig]

CHANNEL_CONFIG_TYPES: dict[ChannelType, type] = {
    ChannelType.EMAIL: EmailChannelConfig,
    ChannelType.SMS: SmsChannelConfig,
    ChannelType.WEBHOOK: WebhookChannelConfig,
}


@dataclass
class NotificationChannel:
    """A delivery channel with its type-specific configuration payload.

    `configuration` may arrive as a raw mapping; it is resolved into the
    typed variant for `type` by `resolved_configuration()`.
    """
    type: ChannelType
    enabled: bool = True
    configuration: Any = None
    priority_filter: list[AlertPriority] = field(
        default_factory=lambda: list(AlertPriority)
    )

    def resolved_configuration(self) -> ChannelConfiguration:
        config_type = CHANNEL_CONFIG_TYPES[self.type]
        raw = self.configuration

        if raw is None:
            return config_type()
        if isinstance(raw, config_type):
            return raw
        if isinstance(raw, dict):
            known = {f.name for f in fields(config_type)}
            return config_type(**{k: v for k, v in raw.items() if k in known})

        raise ConfigurationError(
            f"{type(raw).__name__} is not a valid configuration for "
            f"{self.type.value} channels"
        )

    def accepts(self, severity: AlertPriority) -> bool:
        return self.enabled and severity in self.priority_filter


@dataclass
class ContactMethod:
    type: ChannelType
    value: str
    verified: bool = True
    primary: bool = False


@dataclass
class SchedulePeriod:
    """On-call window. Days of week use 0=Sunday .. 6=Saturday."""
    days_of_week: list[int]
    start_time: str                  # HH:MM
    end_time: str                    # HH:MM
    effective_date_start: Optional[date] = None
    effective_date_end: Optional[date] = None


@dataclass
class OnCallSchedule:
    timezone: str = "UTC"
    schedules: list[SchedulePeriod] = field(default_factory=list)
    coverage_required: bool = False


@dataclass
class NotificationPreferences:
    """Per-recipient delivery preferences.

    An empty `channels_by_priority` accepts every channel.
    """
    channels_by_priority: dict[AlertPriority, list[ChannelType]] = field(default_factory=dict)
    max_notifications_per_hour: Optional[int] = None
    weekend_notifications: bool = True
    vacation_mode: bool = False

    def allows(self, severity: AlertPriority, channel: ChannelType) -> bool:
        if not self.channels_by_priority:
            return True
        return channel in self.channels_by_priority.get(severity, [])


@dataclass
class NotificationRecipient:
    id: str
    name: str = ""
    contact_methods: list[ContactMethod] = field(default_factory=list)
    role: str = ""
    department: str = ""
    escalation_level: int = 0
    on_call_schedule: Optional[OnCallSchedule] = None
    notification_preferences: NotificationPreferences = field(
        default_factory=NotificationPreferences
    )

    def contact_for(self, channel: ChannelType) -> Optional[ContactMethod]:
        """Verified contact method for a channel, primary first."""
        verified = [
            cm for cm in self.contact_methods
            if cm.type == channel and cm.verified
        ]
        verified.sort(key=lambda cm: not cm.primary)
        return verified[0] if verified else None


@dataclass
class FrequencyLimits:
    max_alerts_per_hour: int = 20
    max_alerts_per_day: int = 100
    cooldown_between_similar: int = 0    # minutes
    escalation_threshold: int = 3


@dataclass
class QuietHours:
    """Do-not-disturb window evaluated in `timezone`.

    `exceptions` lists priority values (or alert ids) that bypass the
    window. Critical alerts always bypass it.
    """
    enabled: bool = False
    start_time: str = "22:00"
    end_time: str = "07:00"
    timezone: str = "UTC"
    exceptions: list[str] = field(default_factory=list)
    weekend_override: bool = False


@dataclass
class NotificationSettings:
    channels: list[NotificationChannel] = field(default_factory=list)
    recipients: list[NotificationRecipient] = field(default_factory=list)
    frequency_limits: FrequencyLimits = field(default_factory=FrequencyLimits)
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    escalation_delays: list[int] = field(default_factory=list)
    custom_message_template: Optional[str] = None

    def recipient_by_id(self, recipient_id: str) -> Optional[NotificationRecipient]:
        for recipient in self.recipients:
            if recipient.id == recipient_id:
                return recipient
        return None


@dataclass
class EscalationStage:
    level: int
    delay_minutes: int = 0
    recipients: list[str] = field(default_factory=list)
    channels: list[ChannelType] = field(default_factory=list)
    require_acknowledgment: bool = True
    acknowledgment_timeout: int = 30     # minutes
    skip_if_acknowledged: bool = True
    custom_message: Optional[str] = None


@dataclass
class EscalationPolicy:
    id: str
    name: str = ""
    description: str = ""
    stages: list[EscalationStage] = field(default_factory=list)
    max_escalations: int = 3
    escalation_timeout: int = 60         # minutes
    auto_resolve: bool = False
    auto_resolve_timeout: int = 120      # minutes


@dataclass
class AlertConfiguration:
    """Top-level object a user manages: rules plus delivery settings."""
    id: str
    name: str
    rules: list[AlertRule] = field(default_factory=list)
    description: str = ""
    user_id: str = ""
    organization_id: str = ""
    status: ConfigurationStatus = ConfigurationStatus.ACTIVE
    notification_settings: NotificationSettings = field(default_factory=NotificationSettings)
    escalation_policy: Optional[EscalationPolicy] = None
    metadata: AlertMetadata = field(default_factory=AlertMetadata)
    created_by: str = ""
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def is_active(self) -> bool:
        return self.status == ConfigurationStatus.ACTIVE


# ── Evaluation results ───────────────────────────────────────────────


@dataclass
class MetricValueResult:
    """Per-condition snapshot attached to an alert."""
    metric: MetricSelector
    value: Optional[float]
    threshold: float
    timestamp: datetime
    evaluation_window: str
    contributing_factors: list[str] = field(default_factory=list)
    evaluable: bool = True


@dataclass
class ConditionResult:
    condition_id: str
    met: bool
    actual_value: Optional[float]
    threshold_value: float
    deviation: float = 0.0
    evaluation_method: str = ""
    evaluable: bool = True
    data_points: int = 0


@dataclass
class SensorDataSummary:
    sensor_id: str
    sensor_name: str
    current_value: Optional[float]
    historical_average: Optional[float] = None
    trend: str = "stable"


@dataclass
class AlertContext:
    """Snapshot of the surroundings an alert fired in."""
    sensor_data: list[SensorDataSummary] = field(default_factory=list)
    system_status: Optional[Any] = None
    related_alerts: list[str] = field(default_factory=list)
    weather_conditions: Optional[dict[str, Any]] = None
    occupancy_status: Optional[dict[str, Any]] = None
    suggested_actions: list[str] = field(default_factory=list)


@dataclass
class RuleEvaluationResult:
    rule_id: str
    triggered: bool
    severity: AlertPriority
    conditions_met: list[ConditionResult] = field(default_factory=list)
    metric_values: list[MetricValueResult] = field(default_factory=list)
    confidence: float = 0.0
    suppressed: bool = False
    suppression_reason: Optional[str] = None
    suggested_actions: list[str] = field(default_factory=list)


# ── Alert instances and audit trail ──────────────────────────────────


@dataclass(frozen=True)
class NotificationLog:
    """Immutable record of one delivery attempt."""
    channel: ChannelType
    recipient: str
    sent_at: datetime
    status: NotificationStatus
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    escalation_level: int = 0
    alert_id: str = ""
    id: str = field(default_factory=_new_id)

    @property
    def is_sent(self) -> bool:
        return self.status == NotificationStatus.SENT


@dataclass
class AlertInstance:
    """A triggered alert and its append-only lifecycle record.

    Created once by the alert factory. Acknowledgment, resolution,
    escalation level and notification log are only ever set forward.
    """
    configuration_id: str
    rule_id: str
    severity: AlertPriority
    title: str
    triggered_at: datetime
    description: str = ""
    metric_values: list[MetricValueResult] = field(default_factory=list)
    context: AlertContext = field(default_factory=AlertContext)
    confidence: float = 0.0
    status: AlertInstanceStatus = AlertInstanceStatus.TRIGGERED
    escalation_level: int = 0
    suppressed: bool = False
    false_positive: bool = False
    notification_log: list[NotificationLog] = field(default_factory=list)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    escalated_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: f"alert_{_new_id()}")

    def is_open(self) -> bool:
        """True while the alert still wants attention."""
        return self.status == AlertInstanceStatus.TRIGGERED

    @property
    def last_sent_at(self) -> Optional[datetime]:
        sent = [entry.sent_at for entry in self.notification_log if entry.is_sent]
        return max(sent) if sent else None

    @property
    def last_logged_at(self) -> Optional[datetime]:
        if not self.notification_log:
            return None
        return self.notification_log[-1].sent_at

    def acknowledge(self, by: str, at: Optional[datetime] = None) -> None:
        if self.acknowledged_at is not None:
            raise InvalidTransitionError(f"Alert {self.id} already acknowledged", self.id)
        if not self.is_open():
            raise InvalidTransitionError(
                f"Cannot acknowledge alert {self.id} in status {self.status.value}",
                self.id,
            )
        self.acknowledged_at = at or _utc_now()
        self.acknowledged_by = by
        self.status = AlertInstanceStatus.ACKNOWLEDGED

    def resolve(
        self,
        by: str,
        at: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> None:
        if self.resolved_at is not None or self.status in (
            AlertInstanceStatus.RESOLVED, AlertInstanceStatus.FALSE_POSITIVE,
        ):
            raise InvalidTransitionError(f"Alert {self.id} already closed", self.id)
        self.resolved_at = at or _utc_now()
        self.resolved_by = by
        self.resolution_notes = notes
        self.status = AlertInstanceStatus.RESOLVED

    def mark_false_positive(self, by: str, at: Optional[datetime] = None) -> None:
        self.resolve(by, at, notes="false positive")
        self.false_positive = True
        self.status = AlertInstanceStatus.FALSE_POSITIVE

    def escalate_to(self, level: int, at: Optional[datetime] = None) -> None:
        if level <= self.escalation_level:
            raise InvalidTransitionError(
                f"Alert {self.id} is already at escalation level {self.escalation_level}",
                self.id,
            )
        self.escalation_level = level
        self.escalated_at = at or _utc_now()

    def append_notifications(self, entries: list[NotificationLog]) -> None:
        """Append log entries, keeping the log sorted by sent_at."""
        ordered = sorted(entries, key=lambda e: e.sent_at)
        last = self.last_logged_at
        if ordered and last is not None and ordered[0].sent_at < last:
            raise InvalidTransitionError(
                f"Notification log for {self.id} is append-only: entry at "
                f"{ordered[0].sent_at.isoformat()} predates {last.isoformat()}",
                self.id,
            )
        self.notification_log.extend(ordered)


# ── Validation ───────────────────────────────────────────────────────


@dataclass
class ValidationError:
    field: str
    error_code: str
    message: str
    severity: str = "error"


@dataclass
class ValidationWarning:
    field: str
    warning_code: str
    message: str
    recommendation: str = ""


@dataclass
class ValidationSuggestion:
    category: str
    suggestion: str
    benefit: str = ""
    implementation_effort: str = "low"


@dataclass
class SubscriptionCompatibility:
    tier_required: str
    features_available: list[str] = field(default_factory=list)
    features_blocked: list[str] = field(default_factory=list)
    upgrade_benefits: list[str] = field(default_factory=list)
    estimated_monthly_cost: float = 0.0


@dataclass
class AlertValidation:
    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    suggestions: list[ValidationSuggestion] = field(default_factory=list)
    estimated_alert_volume: int = 0
    estimated_cost_impact: float = 0.0
    subscription_compatibility: Optional[SubscriptionCompatibility] = None

"""Alert evaluation & notification configuration.

Enums, domain constants, and subscription tier limits for the
building alert engine.
"""

import enum
from dataclasses import dataclass, field


class AlertPriority(enum.Enum):
    """Alert priority (and severity) levels, lowest first."""
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def raised(self, steps: int = 1) -> "AlertPriority":
        """Return the priority `steps` levels higher, capped at CRITICAL."""
        index = min(self.rank + steps, len(_PRIORITY_ORDER) - 1)
        return _PRIORITY_ORDER[index]


_PRIORITY_ORDER = [
    AlertPriority.INFO,
    AlertPriority.LOW,
    AlertPriority.MEDIUM,
    AlertPriority.HIGH,
    AlertPriority.CRITICAL,
]


class ConfigurationStatus(enum.Enum):
    """Alert configuration lifecycle status."""
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    TESTING = "testing"


class AlertInstanceStatus(enum.Enum):
    """Lifecycle status of a triggered alert."""
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class LogicalOperator(enum.Enum):
    """Logical operators joining the conditions of a rule."""
    AND = "AND"
    OR = "OR"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            return cls.__members__.get(value.upper())
        return None


class ComparisonOperator(enum.Enum):
    """Condition comparison operators."""
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    BETWEEN = "between"
    OUTSIDE_RANGE = "outside_range"
    PERCENTAGE_CHANGE = "percentage_change"
    RATE_OF_CHANGE = "rate_of_change"
    ANOMALY_DETECTED = "anomaly_detected"


class AggregationFunction(enum.Enum):
    """Time aggregation functions applied to a reading window."""
    AVERAGE = "average"
    SUM = "sum"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    COUNT = "count"
    MEDIAN = "median"
    PERCENTILE = "percentile"
    STANDARD_DEVIATION = "standard_deviation"
    RATE_OF_CHANGE = "rate_of_change"

    @classmethod
    def _missing_(cls, value):
        return _AGGREGATION_ALIASES.get(value)


_AGGREGATION_ALIASES = {
    "avg": AggregationFunction.AVERAGE,
    "mean": AggregationFunction.AVERAGE,
    "min": AggregationFunction.MINIMUM,
    "max": AggregationFunction.MAXIMUM,
    "std": AggregationFunction.STANDARD_DEVIATION,
}


class FilterOperator(enum.Enum):
    """Predicates applied to raw readings before aggregation."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


class ReadingQuality(enum.Enum):
    """Sensor reading quality flags."""
    GOOD = "good"
    WARNING = "warning"
    ERROR = "error"


class ImpactLevel(enum.Enum):
    """Business impact level of a configuration."""
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChannelType(enum.Enum):
    """Notification delivery channels."""
    EMAIL = "email"
    SMS = "sms"
    WEBHOOK = "webhook"


class NotificationStatus(enum.Enum):
    """Notification log entry status."""
    SENT = "sent"
    FAILED = "failed"


class EscalationState(enum.Enum):
    """Escalation state machine positions."""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"
    AUTO_RESOLVED = "auto_resolved"


class SubscriptionTier(enum.Enum):
    """Subscription tiers gating alert features."""
    FREE = "free"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class ErrorCode(enum.Enum):
    """Machine-readable error codes for alerting failures."""
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    CONDITION_EVALUATION_FAILED = "CONDITION_EVALUATION_FAILED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    DELIVERY_TIMEOUT = "DELIVERY_TIMEOUT"
    INVALID_TRANSITION = "INVALID_TRANSITION"


# Sensor keywords matched against sensor id / unit, per metric type
METRIC_SENSOR_KEYWORDS: dict[str, list[str]] = {
    "energy_consumption": ["energy", "power", "kwh"],
    "power_demand": ["power", "demand", "kw"],
    "temperature": ["temperature", "temp"],
    "humidity": ["humidity", "rh"],
    "pressure": ["pressure", "pa"],
    "air_quality": ["co2", "pm25", "voc", "air_quality"],
    "occupancy": ["occupancy", "people", "persons"],
}

# Contributing factor thresholds
BUSINESS_HOURS_START = 9
BUSINESS_HOURS_END = 18        # exclusive
HIGH_TEMPERATURE_C = 30.0
LOW_TEMPERATURE_C = 5.0

# Comparison tolerances
EQUALITY_TOLERANCE = 0.001
DEFAULT_PERCENTILE = 95.0

# Anomaly classifier
ANOMALY_MIN_HISTORY = 10
DEFAULT_ANOMALY_CONFIDENCE = 0.95

# Confidence scoring
MAX_NORMALIZED_DEVIATION = 2.0
DEVIATION_BONUS_WEIGHT = 0.2
MAX_DEVIATION_BONUS = 0.3

# Validation / estimation
ASSUMED_TRIGGER_RATE = 0.05
COST_PER_ALERT = 0.10
HIGH_VOLUME_THRESHOLD = 100
MAX_SUGGESTED_ACTIONS = 5

# Delivery
MAX_DELIVERY_RETRIES = 3
SMS_MAX_LENGTH = 160
DEFAULT_CHANNEL_TIMEOUT_SECONDS = 10.0


@dataclass
class AlertLimits:
    """Feature limits granted by a subscription tier."""
    max_custom_rules: int = 3
    max_notification_channels: int = 1
    max_recipients_per_alert: int = 2
    max_escalation_levels: int = 0
    anomaly_detection_enabled: bool = False
    custom_webhooks_enabled: bool = False
    monthly_cost: float = 0.0
    features: list[str] = field(default_factory=list)


TIER_LIMITS: dict[SubscriptionTier, AlertLimits] = {
    SubscriptionTier.FREE: AlertLimits(
        features=["Threshold alerts", "Email notifications"],
    ),
    SubscriptionTier.PROFESSIONAL: AlertLimits(
        max_custom_rules=25,
        max_notification_channels=3,
        max_recipients_per_alert=10,
        max_escalation_levels=3,
        anomaly_detection_enabled=True,
        custom_webhooks_enabled=True,
        monthly_cost=29.99,
        features=[
            "Advanced metrics",
            "Multiple notification channels",
            "Escalation policies",
            "Anomaly detection",
        ],
    ),
    SubscriptionTier.ENTERPRISE: AlertLimits(
        max_custom_rules=500,
        max_notification_channels=10,
        max_recipients_per_alert=100,
        max_escalation_levels=10,
        anomaly_detection_enabled=True,
        custom_webhooks_enabled=True,
        monthly_cost=199.0,
        features=[
            "Advanced metrics",
            "Multiple notification channels",
            "Escalation policies",
            "Anomaly detection",
            "API access for integrations",
            "Priority support",
        ],
    ),
}

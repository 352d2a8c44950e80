"""Building Alert Evaluation & Notification Escalation.

Rule evaluation over building sensor readings, deduplication under
cooldown, and multi-channel notification delivery with quiet hours,
frequency limits and staged escalation.

Example:
    from src.alerts import AlertRuleEngine, NotificationDeliveryService

    engine = AlertRuleEngine()
    alerts = engine.evaluate_alerts(configurations, context)

    delivery = NotificationDeliveryService()
    for alert in alerts:
        config = by_id[alert.configuration_id]
        delivery.deliver(config.notification_settings, alert)

    # later, driven by a scheduler
    delivery.escalate(alert, config.escalation_policy, config.notification_settings)
"""

from src.alerts.aggregation import AggregateResult, MetricAggregator
from src.alerts.conditions import (
    AnomalyClassifier,
    ConditionEvaluator,
    ZScoreAnomalyClassifier,
    contributing_factors,
)
from src.alerts.config import (
    AggregationFunction,
    AlertInstanceStatus,
    AlertLimits,
    AlertPriority,
    ChannelType,
    ComparisonOperator,
    ConfigurationStatus,
    ErrorCode,
    EscalationState,
    FilterOperator,
    ImpactLevel,
    LogicalOperator,
    NotificationStatus,
    ReadingQuality,
    SubscriptionTier,
    TIER_LIMITS,
)
from src.alerts.dedup import DeduplicationGuard
from src.alerts.delivery import NotificationDeliveryService
from src.alerts.engine import AlertRuleEngine
from src.alerts.escalation import EscalationPlan, EscalationScheduler
from src.alerts.exceptions import (
    AlertingError,
    ConditionEvaluationError,
    ConfigurationError,
    DeliveryError,
    DeliveryTimeoutError,
    InvalidTransitionError,
)
from src.alerts.factory import AlertFactory
from src.alerts.models import (
    AlertCondition,
    AlertConfiguration,
    AlertInstance,
    AlertMetadata,
    AlertRule,
    AlertValidation,
    BusinessImpact,
    ContactMethod,
    EmailChannelConfig,
    EscalationPolicy,
    EscalationStage,
    EvaluationContext,
    FrequencyLimits,
    MaintenanceWindow,
    MetricFilter,
    MetricSelector,
    NotificationChannel,
    NotificationLog,
    NotificationPreferences,
    NotificationRecipient,
    NotificationSettings,
    OnCallSchedule,
    QuietHours,
    SchedulePeriod,
    SensorReading,
    SmsChannelConfig,
    Threshold,
    TimeAggregation,
    WebhookChannelConfig,
)
from src.alerts.routing import NotificationRouter, RoutingDecision
from src.alerts.rules import RuleEvaluator
from src.alerts.store import AlertStore, InMemoryAlertStore
from src.alerts.validation import (
    ConfigurationValidator,
    StaticTierLimits,
    TierLimitsProvider,
)

__all__ = [
    # Config
    "AggregationFunction",
    "AlertInstanceStatus",
    "AlertLimits",
    "AlertPriority",
    "ChannelType",
    "ComparisonOperator",
    "ConfigurationStatus",
    "ErrorCode",
    "EscalationState",
    "FilterOperator",
    "ImpactLevel",
    "LogicalOperator",
    "NotificationStatus",
    "ReadingQuality",
    "SubscriptionTier",
    "TIER_LIMITS",
    # Models
    "AlertCondition",
    "AlertConfiguration",
    "AlertInstance",
    "AlertMetadata",
    "AlertRule",
    "AlertValidation",
    "BusinessImpact",
    "ContactMethod",
    "EmailChannelConfig",
    "EscalationPolicy",
    "EscalationStage",
    "EvaluationContext",
    "FrequencyLimits",
    "MaintenanceWindow",
    "MetricFilter",
    "MetricSelector",
    "NotificationChannel",
    "NotificationLog",
    "NotificationPreferences",
    "NotificationRecipient",
    "NotificationSettings",
    "OnCallSchedule",
    "QuietHours",
    "SchedulePeriod",
    "SensorReading",
    "SmsChannelConfig",
    "Threshold",
    "TimeAggregation",
    "WebhookChannelConfig",
    # Evaluation
    "AggregateResult",
    "AlertFactory",
    "AlertRuleEngine",
    "AnomalyClassifier",
    "ConditionEvaluator",
    "ConfigurationValidator",
    "DeduplicationGuard",
    "MetricAggregator",
    "RuleEvaluator",
    "StaticTierLimits",
    "TierLimitsProvider",
    "ZScoreAnomalyClassifier",
    "contributing_factors",
    # Delivery
    "EscalationPlan",
    "EscalationScheduler",
    "NotificationDeliveryService",
    "NotificationRouter",
    "RoutingDecision",
    # Store
    "AlertStore",
    "InMemoryAlertStore",
    # Errors
    "AlertingError",
    "ConditionEvaluationError",
    "ConfigurationError",
    "DeliveryError",
    "DeliveryTimeoutError",
    "InvalidTransitionError",
]

"""Static validation of alert configurations.

Checks structure, thresholds and subscription entitlements without
looking at live sensor data, and estimates the resulting alert volume.
Validation never raises; every finding is returned as a record.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.alerts.config import (
    AlertLimits,
    AlertPriority,
    ASSUMED_TRIGGER_RATE,
    ChannelType,
    ComparisonOperator,
    COST_PER_ALERT,
    FilterOperator,
    HIGH_VOLUME_THRESHOLD,
    SubscriptionTier,
    TIER_LIMITS,
)
from src.alerts.routing import parse_hhmm
from src.alerts.models import (
    AlertConfiguration,
    AlertRule,
    AlertValidation,
    SubscriptionCompatibility,
    ValidationError,
    ValidationSuggestion,
    ValidationWarning,
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

_TIER_ORDER = [
    SubscriptionTier.FREE,
    SubscriptionTier.PROFESSIONAL,
    SubscriptionTier.ENTERPRISE,
]

_RANGE_OPERATORS = (ComparisonOperator.BETWEEN, ComparisonOperator.OUTSIDE_RANGE)


class TierLimitsProvider(ABC):
    """Identity/subscription collaborator supplying tier limits."""

    @abstractmethod
    def tier_for(self, configuration: AlertConfiguration) -> SubscriptionTier:
        """Subscription tier of the configuration's owner."""

    def limits_for(self, configuration: AlertConfiguration) -> AlertLimits:
        return TIER_LIMITS[self.tier_for(configuration)]


class StaticTierLimits(TierLimitsProvider):
    """Every configuration is on the same tier."""

    def __init__(self, tier: SubscriptionTier = SubscriptionTier.PROFESSIONAL) -> None:
        self.tier = tier

    def tier_for(self, configuration):
        return self.tier


def estimate_alert_volume(configuration: AlertConfiguration) -> int:
    """Estimated alerts per day across enabled rules.

    Evaluations per day times an assumed trigger rate, reduced by the
    share of the day spent in cooldown, with at least one alert per rule.
    """
    total = 0.0
    for rule in configuration.rules:
        if not rule.enabled:
            continue
        window = max(rule.evaluation_window, 1)
        evaluations_per_day = MINUTES_PER_DAY / window
        cooldown_reduction = min(rule.cooldown_period / MINUTES_PER_DAY, 1.0)
        volume = evaluations_per_day * ASSUMED_TRIGGER_RATE * (1 - cooldown_reduction)
        total += max(volume, 1.0)
    return round(total)


def required_features(configuration: AlertConfiguration) -> dict[str, bool]:
    """Which gated features a configuration uses."""
    enabled_channels = [c for c in configuration.notification_settings.channels if c.enabled]
    return {
        "Anomaly detection": any(
            condition.operator == ComparisonOperator.ANOMALY_DETECTED
            for rule in configuration.rules
            for condition in rule.conditions
        ),
        "Custom webhooks": any(c.type == ChannelType.WEBHOOK for c in enabled_channels),
        "Escalation policies": bool(
            configuration.escalation_policy and configuration.escalation_policy.stages
        ),
        "Multiple notification channels": len(enabled_channels) > 1,
    }


def _fits(configuration: AlertConfiguration, limits: AlertLimits) -> bool:
    features = required_features(configuration)
    policy = configuration.escalation_policy
    settings = configuration.notification_settings
    return (
        len(configuration.rules) <= limits.max_custom_rules
        and len(settings.channels) <= limits.max_notification_channels
        and len(settings.recipients) <= limits.max_recipients_per_alert
        and (policy is None or len(policy.stages) <= limits.max_escalation_levels)
        and (not features["Anomaly detection"] or limits.anomaly_detection_enabled)
        and (not features["Custom webhooks"] or limits.custom_webhooks_enabled)
    )


def _feature_allowed(feature: str, limits: AlertLimits) -> bool:
    if feature == "Anomaly detection":
        return limits.anomaly_detection_enabled
    if feature == "Custom webhooks":
        return limits.custom_webhooks_enabled
    if feature == "Escalation policies":
        return limits.max_escalation_levels > 0
    if feature == "Multiple notification channels":
        return limits.max_notification_channels > 1
    return True


def _valid_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        return False
    return True


def _valid_hhmm(value: str) -> bool:
    try:
        parse_hhmm(value)
    except (ValueError, AttributeError):
        return False
    return True


class ConfigurationValidator:
    """Validates configurations against structure rules and tier limits."""

    def __init__(self, tier_provider: Optional[TierLimitsProvider] = None) -> None:
        self.tier_provider = tier_provider or StaticTierLimits()

    def validate(self, configuration: AlertConfiguration) -> AlertValidation:
        """Validate a configuration.

        Args:
            configuration: Configuration to check; may be incomplete.

        Returns:
            AlertValidation with errors, warnings, suggestions, volume and
            cost estimates and subscription compatibility.
        """
        errors: list[ValidationError] = []
        warnings: list[ValidationWarning] = []
        suggestions: list[ValidationSuggestion] = []

        if not configuration.name:
            errors.append(ValidationError(
                "name", "REQUIRED", "Configuration name is required",
            ))
        if not configuration.rules:
            errors.append(ValidationError(
                "rules", "REQUIRED", "At least one rule is required",
            ))

        for index, rule in enumerate(configuration.rules):
            self._check_rule(index, rule, errors, warnings, suggestions)

        tier = self.tier_provider.tier_for(configuration)
        limits = self.tier_provider.limits_for(configuration)
        self._check_limits(configuration, tier, limits, errors)
        self._check_delivery(configuration, warnings, suggestions)
        self._check_schedules(configuration, errors)

        volume = estimate_alert_volume(configuration)
        if volume > HIGH_VOLUME_THRESHOLD:
            warnings.append(ValidationWarning(
                "rules", "HIGH_VOLUME",
                f"Estimated {volume} alerts per day may be excessive",
                "Consider adjusting thresholds or adding cooldown periods",
            ))

        validation = AlertValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
            estimated_alert_volume=volume,
            estimated_cost_impact=round(volume * COST_PER_ALERT, 2),
            subscription_compatibility=self._compatibility(configuration, tier, limits),
        )
        logger.debug(
            "Validated configuration %s: %d errors, %d warnings",
            configuration.id, len(errors), len(warnings),
        )
        return validation

    def _check_rule(
        self,
        index: int,
        rule: AlertRule,
        errors: list[ValidationError],
        warnings: list[ValidationWarning],
        suggestions: list[ValidationSuggestion],
    ) -> None:
        prefix = f"rules[{index}]"

        if not rule.conditions:
            errors.append(ValidationError(
                f"{prefix}.conditions", "REQUIRED",
                f'Rule "{rule.name}" must have at least one condition',
            ))
        if rule.evaluation_window <= 0:
            errors.append(ValidationError(
                f"{prefix}.evaluation_window", "INVALID_RANGE",
                "Evaluation window must be a positive number of minutes",
            ))
        if rule.cooldown_period < 0:
            errors.append(ValidationError(
                f"{prefix}.cooldown_period", "INVALID_RANGE",
                "Cooldown period cannot be negative",
            ))
        if rule.cooldown_period == 0 and rule.enabled:
            suggestions.append(ValidationSuggestion(
                "noise_reduction",
                f'Add a cooldown period to rule "{rule.name}"',
                "Fewer repeated alerts for a persisting condition",
            ))

        for c_index, condition in enumerate(rule.conditions):
            field = f"{prefix}.conditions[{c_index}]"
            aggregation = condition.time_aggregation

            if aggregation.period <= 0 or aggregation.minimum_data_points < 1:
                errors.append(ValidationError(
                    f"{field}.time_aggregation", "INVALID_AGGREGATION",
                    "Aggregation period and minimum data points must be positive",
                ))

            if condition.operator in _RANGE_OPERATORS:
                secondary = condition.threshold.secondary_value
                if secondary is None or secondary < condition.threshold.value:
                    errors.append(ValidationError(
                        f"{field}.threshold", "INVALID_RANGE",
                        f"{condition.operator.value} needs a secondary value "
                        "not below the threshold value",
                    ))

            for f_index, metric_filter in enumerate(condition.filters):
                if metric_filter.operator not in {op.value for op in FilterOperator}:
                    errors.append(ValidationError(
                        f"{field}.filters[{f_index}]", "INVALID_FILTER",
                        f"Unknown filter operator '{metric_filter.operator}'",
                    ))

            if (
                condition.threshold.value == 0
                and condition.operator != ComparisonOperator.EQUALS
            ):
                warnings.append(ValidationWarning(
                    f"{prefix}.conditions", "SENSITIVE_THRESHOLD",
                    "Zero threshold may cause excessive alerts",
                    "Consider setting a more appropriate threshold value",
                ))

    @staticmethod
    def _check_limits(
        configuration: AlertConfiguration,
        tier: SubscriptionTier,
        limits: AlertLimits,
        errors: list[ValidationError],
    ) -> None:
        settings = configuration.notification_settings
        counts = [
            ("rules", len(configuration.rules), limits.max_custom_rules, "rules"),
            (
                "notification_settings.channels", len(settings.channels),
                limits.max_notification_channels, "notification channels",
            ),
            (
                "notification_settings.recipients", len(settings.recipients),
                limits.max_recipients_per_alert, "recipients",
            ),
        ]
        policy = configuration.escalation_policy
        if policy is not None:
            counts.append((
                "escalation_policy.stages", len(policy.stages),
                limits.max_escalation_levels, "escalation levels",
            ))

        for field, count, maximum, label in counts:
            if count > maximum:
                errors.append(ValidationError(
                    field, "TIER_LIMIT_EXCEEDED",
                    f"{count} {label} exceeds the {tier.value} limit of {maximum}",
                ))

        for feature, used in required_features(configuration).items():
            if feature == "Multiple notification channels":
                continue  # covered by the channel count limit
            if used and not _feature_allowed(feature, limits):
                errors.append(ValidationError(
                    "subscription", "FEATURE_NOT_AVAILABLE",
                    f"{feature} is not available on the {tier.value} tier",
                ))

    @staticmethod
    def _check_delivery(
        configuration: AlertConfiguration,
        warnings: list[ValidationWarning],
        suggestions: list[ValidationSuggestion],
    ) -> None:
        settings = configuration.notification_settings
        if not any(c.enabled for c in settings.channels):
            warnings.append(ValidationWarning(
                "notification_settings.channels", "NO_CHANNELS",
                "No enabled notification channels; alerts will not be delivered",
                "Enable at least one channel",
            ))

        has_critical = any(
            r.priority == AlertPriority.CRITICAL for r in configuration.rules
        )
        policy = configuration.escalation_policy
        if has_critical and (policy is None or not policy.stages):
            warnings.append(ValidationWarning(
                "escalation_policy", "NO_ESCALATION",
                "Critical rules have no escalation policy",
                "Add escalation stages so unacknowledged critical alerts reach on-call staff",
            ))

        if not settings.quiet_hours.enabled and settings.channels:
            suggestions.append(ValidationSuggestion(
                "notification_fatigue",
                "Configure quiet hours for non-critical alerts",
                "Critical alerts still get through while low-priority noise waits",
            ))

    @staticmethod
    def _check_schedules(
        configuration: AlertConfiguration,
        errors: list[ValidationError],
    ) -> None:
        settings = configuration.notification_settings
        zones = [
            ("metadata.timezone", configuration.metadata.timezone),
            ("notification_settings.quiet_hours.timezone", settings.quiet_hours.timezone),
        ]
        times = [
            ("notification_settings.quiet_hours.start_time", settings.quiet_hours.start_time),
            ("notification_settings.quiet_hours.end_time", settings.quiet_hours.end_time),
        ]
        for r_index, recipient in enumerate(settings.recipients):
            schedule = recipient.on_call_schedule
            if schedule is None:
                continue
            prefix = f"notification_settings.recipients[{r_index}].on_call_schedule"
            zones.append((f"{prefix}.timezone", schedule.timezone))
            for p_index, period in enumerate(schedule.schedules):
                times.append((f"{prefix}.schedules[{p_index}].start_time", period.start_time))
                times.append((f"{prefix}.schedules[{p_index}].end_time", period.end_time))

        for field, name in zones:
            if not _valid_zone(name):
                errors.append(ValidationError(
                    field, "INVALID_TIMEZONE", f"Unknown timezone '{name}'",
                ))
        for field, value in times:
            if not _valid_hhmm(value):
                errors.append(ValidationError(
                    field, "INVALID_TIME", f"'{value}' is not a valid HH:MM time",
                ))

    @staticmethod
    def _compatibility(
        configuration: AlertConfiguration,
        tier: SubscriptionTier,
        limits: AlertLimits,
    ) -> SubscriptionCompatibility:
        required = next(
            (t for t in _TIER_ORDER if _fits(configuration, TIER_LIMITS[t])),
            SubscriptionTier.ENTERPRISE,
        )
        blocked = [
            feature for feature, used in required_features(configuration).items()
            if used and not _feature_allowed(feature, limits)
        ]

        position = _TIER_ORDER.index(tier)
        upgrade: list[str] = []
        if position + 1 < len(_TIER_ORDER):
            next_limits = TIER_LIMITS[_TIER_ORDER[position + 1]]
            upgrade = [f for f in next_limits.features if f not in limits.features]

        return SubscriptionCompatibility(
            tier_required=required.value,
            features_available=list(limits.features),
            features_blocked=blocked,
            upgrade_benefits=upgrade,
            estimated_monthly_cost=TIER_LIMITS[required].monthly_cost,
        )

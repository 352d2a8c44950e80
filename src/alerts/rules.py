"""Rule evaluation.

Combines condition results per rule, computes severity and confidence,
and applies maintenance-window suppression.
"""

import logging
from typing import Optional

from src.alerts.conditions import ConditionEvaluator
from src.alerts.config import (
    AlertPriority,
    ComparisonOperator,
    DEVIATION_BONUS_WEIGHT,
    ImpactLevel,
    LogicalOperator,
    MAX_DEVIATION_BONUS,
    MAX_NORMALIZED_DEVIATION,
    MAX_SUGGESTED_ACTIONS,
)
from src.alerts.exceptions import ConditionEvaluationError
from src.alerts.models import (
    AlertConfiguration,
    AlertRule,
    ConditionResult,
    EvaluationContext,
    RuleEvaluationResult,
)

logger = logging.getLogger(__name__)


def combine(operator: LogicalOperator, results: list[ConditionResult]) -> bool:
    """AND: every condition evaluable and met. OR: at least one met."""
    if not results:
        return False
    if operator == LogicalOperator.OR:
        return any(r.met for r in results)
    return all(r.evaluable and r.met for r in results)


def calculate_confidence(results: list[ConditionResult]) -> float:
    """Confidence in [0, 1] that a rule's firing is genuine.

    The share of met conditions, plus a bonus for how far the met
    conditions exceed their thresholds (normalized by threshold and
    capped). Non-decreasing in both the number of met conditions and
    their deviations.
    """
    if not results:
        return 0.0

    met = [r for r in results if r.met]
    base = len(met) / len(results)

    normalized = [
        min(r.deviation / abs(r.threshold_value or 1.0), MAX_NORMALIZED_DEVIATION)
        for r in met
    ]
    avg_deviation = sum(normalized) / max(len(met), 1)
    bonus = min(avg_deviation * DEVIATION_BONUS_WEIGHT, MAX_DEVIATION_BONUS)

    return min(base + bonus, 1.0)


def adjust_severity(
    priority: AlertPriority,
    configuration: AlertConfiguration,
) -> AlertPriority:
    """Raise severity for high-impact configurations when auto-adjust is on."""
    metadata = configuration.metadata
    if not metadata.severity_auto_adjust:
        return priority

    level = metadata.business_impact.level
    if level == ImpactLevel.CRITICAL:
        return AlertPriority.CRITICAL
    if level == ImpactLevel.HIGH:
        return priority.raised()
    return priority


def suggest_actions(results: list[ConditionResult]) -> list[str]:
    actions: list[str] = []
    for result in results:
        if not result.met:
            continue
        if result.evaluation_method == ComparisonOperator.GREATER_THAN.value:
            actions.append(
                f"Investigate why condition {result.condition_id} exceeded "
                f"its threshold by {result.deviation:.2f}"
            )
        if result.deviation > abs(result.threshold_value) * 0.5:
            actions.append("Consider immediate investigation due to significant deviation")

    actions.append("Check system logs for related errors")
    actions.append("Verify sensor calibration and connectivity")
    return actions[:MAX_SUGGESTED_ACTIONS]


class RuleEvaluator:
    """Evaluates one rule of a configuration against a context."""

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None) -> None:
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    def evaluate(
        self,
        rule: AlertRule,
        configuration: AlertConfiguration,
        context: EvaluationContext,
    ) -> RuleEvaluationResult:
        """Evaluate every condition of a rule in order.

        Args:
            rule: Rule to evaluate.
            configuration: Owning configuration (metadata, timezone).
            context: Evaluation context.

        Returns:
            RuleEvaluationResult. A rule never fires without sensor data.
        """
        tz_name = configuration.metadata.timezone
        condition_results: list[ConditionResult] = []
        metric_values = []

        for condition in rule.conditions:
            try:
                result, snapshot = self.condition_evaluator.evaluate(
                    condition, context, tz_name,
                )
            except Exception as exc:
                raise ConditionEvaluationError(
                    f"Condition {condition.id} of rule {rule.id} failed: {exc}",
                    condition.id,
                ) from exc
            condition_results.append(result)
            metric_values.append(snapshot)

        triggered = context.has_sensor_data and combine(
            rule.logical_operator, condition_results,
        )
        severity = adjust_severity(rule.priority, configuration)
        suppressed, reason = self._suppression(severity, configuration, context)

        result = RuleEvaluationResult(
            rule_id=rule.id,
            triggered=triggered,
            severity=severity,
            conditions_met=condition_results,
            metric_values=metric_values,
            confidence=calculate_confidence(condition_results),
            suppressed=suppressed,
            suppression_reason=reason,
            suggested_actions=suggest_actions(condition_results) if triggered else [],
        )

        logger.debug(
            "Rule %s: triggered=%s severity=%s confidence=%.2f",
            rule.id, triggered, severity.value, result.confidence,
        )
        return result

    @staticmethod
    def _suppression(
        severity: AlertPriority,
        configuration: AlertConfiguration,
        context: EvaluationContext,
    ) -> tuple[bool, Optional[str]]:
        window = configuration.metadata.maintenance_suppression
        if window is None or severity == AlertPriority.CRITICAL:
            return False, None
        if window.is_active(context.current_time):
            return True, window.reason or "maintenance window"
        return False, None

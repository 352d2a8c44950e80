"""Alert instance construction."""

import logging
from datetime import timedelta
from typing import Optional

import numpy as np

from src.alerts.aggregation import reading_matches_metric
from src.alerts.models import (
    AlertConfiguration,
    AlertContext,
    AlertInstance,
    AlertRule,
    EvaluationContext,
    MetricValueResult,
    RuleEvaluationResult,
    SensorDataSummary,
)
from src.alerts.store import AlertStore

logger = logging.getLogger(__name__)

RELATED_ALERT_LOOKBACK = timedelta(hours=24)
TREND_TOLERANCE = 0.05


def describe(rule: AlertRule, result: RuleEvaluationResult) -> str:
    """Human-readable description of why a rule fired."""
    prefix = rule.description or rule.name
    met = [c for c in result.conditions_met if c.met]

    if len(met) == 1:
        condition = met[0]
        return (
            f"{prefix}: Value {condition.actual_value:.2f} "
            f"{condition.evaluation_method.replace('_', ' ')} "
            f"threshold {condition.threshold_value:.2f}"
        )
    return (
        f"{prefix}: Multiple conditions triggered "
        f"({len(met)}/{len(result.conditions_met)})"
    )


def _trend(current: Optional[float], average: Optional[float]) -> str:
    if current is None or average is None or average == 0:
        return "stable"
    change = (current - average) / abs(average)
    if change > TREND_TOLERANCE:
        return "increasing"
    if change < -TREND_TOLERANCE:
        return "decreasing"
    return "stable"


def summarize_sensor(
    snapshot: MetricValueResult,
    context: EvaluationContext,
) -> SensorDataSummary:
    history = [
        r.value for r in context.historical_data
        if reading_matches_metric(r, snapshot.metric)
    ]
    average = float(np.mean(history)) if history else None

    return SensorDataSummary(
        sensor_id=snapshot.metric.sensor_id or snapshot.metric.type,
        sensor_name=snapshot.metric.display_name or snapshot.metric.type,
        current_value=snapshot.value,
        historical_average=average,
        trend=_trend(snapshot.value, average),
    )


class AlertFactory:
    """Builds AlertInstances for fired, non-duplicate rules."""

    def __init__(self, store: Optional[AlertStore] = None) -> None:
        self.store = store

    def create(
        self,
        configuration: AlertConfiguration,
        rule: AlertRule,
        result: RuleEvaluationResult,
        context: EvaluationContext,
    ) -> AlertInstance:
        """Build a new alert in `triggered` state.

        Args:
            configuration: Configuration the rule belongs to.
            rule: The fired rule.
            result: Its evaluation result.
            context: Evaluation context the rule fired in.

        Returns:
            The new AlertInstance (not yet saved).
        """
        alert = AlertInstance(
            configuration_id=configuration.id,
            rule_id=rule.id,
            severity=result.severity,
            title=f"{rule.name} - {configuration.name}",
            description=describe(rule, result),
            triggered_at=context.current_time,
            metric_values=list(result.metric_values),
            context=self._build_context(configuration, result, context),
            confidence=result.confidence,
            suppressed=result.suppressed,
        )
        logger.debug("Created alert %s for rule %s", alert.id, rule.id)
        return alert

    def _build_context(
        self,
        configuration: AlertConfiguration,
        result: RuleEvaluationResult,
        context: EvaluationContext,
    ) -> AlertContext:
        related: list[str] = []
        if self.store is not None:
            since = context.current_time - RELATED_ALERT_LOOKBACK
            related = [
                a.id for a in self.store.recent_alerts(configuration.id, since)
            ]

        return AlertContext(
            sensor_data=[summarize_sensor(s, context) for s in result.metric_values],
            system_status=context.system_status,
            related_alerts=related,
            weather_conditions=context.weather_data,
            occupancy_status=context.occupancy_data,
            suggested_actions=list(result.suggested_actions),
        )

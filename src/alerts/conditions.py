"""Condition evaluation engine.

Compares a condition's aggregate against its threshold and annotates the
result with contributing factors drawn from the evaluation context.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np

from src.alerts.aggregation import MetricAggregator, reading_matches_metric
from src.alerts.config import (
    ANOMALY_MIN_HISTORY,
    BUSINESS_HOURS_END,
    BUSINESS_HOURS_START,
    ComparisonOperator,
    DEFAULT_ANOMALY_CONFIDENCE,
    EQUALITY_TOLERANCE,
    HIGH_TEMPERATURE_C,
    LOW_TEMPERATURE_C,
)
from src.alerts.models import (
    AlertCondition,
    ConditionResult,
    EvaluationContext,
    MetricValueResult,
    TimeAggregation,
)

logger = logging.getLogger(__name__)

_BASELINE_PERIODS = {"h": 60, "d": 24 * 60, "w": 7 * 24 * 60}


class AnomalyClassifier(ABC):
    """Scores how anomalous an aggregate is for a condition's metric."""

    @abstractmethod
    def confidence(
        self,
        value: float,
        condition: AlertCondition,
        context: EvaluationContext,
    ) -> float:
        """Return a confidence in [0, 1] that `value` is anomalous."""


class ZScoreAnomalyClassifier(AnomalyClassifier):
    """Statistical outlier classifier over the metric's historical readings.

    The z-score of the value against the historical mean is mapped to a
    two-sided normal confidence, so a confidence level of 0.95 corresponds
    to |z| > 1.96.
    """

    def __init__(self, min_history: int = ANOMALY_MIN_HISTORY) -> None:
        self.min_history = min_history

    def confidence(
        self,
        value: float,
        condition: AlertCondition,
        context: EvaluationContext,
    ) -> float:
        history = np.array([
            r.value for r in context.historical_data
            if reading_matches_metric(r, condition.metric)
        ], dtype=float)

        if history.size < self.min_history:
            return 0.0

        std = float(np.std(history))
        if std == 0:
            return 1.0 if value != float(np.mean(history)) else 0.0

        z = abs(value - float(np.mean(history))) / std
        return math.erf(z / math.sqrt(2))


def compute_deviation(
    operator: ComparisonOperator,
    actual: float,
    threshold: float,
) -> float:
    """How far the actual value lies past the threshold, in metric units."""
    if operator in (
        ComparisonOperator.GREATER_THAN,
        ComparisonOperator.GREATER_THAN_OR_EQUAL,
    ):
        return max(0.0, actual - threshold)
    if operator in (
        ComparisonOperator.LESS_THAN,
        ComparisonOperator.LESS_THAN_OR_EQUAL,
    ):
        return max(0.0, threshold - actual)
    if operator in (
        ComparisonOperator.PERCENTAGE_CHANGE,
        ComparisonOperator.RATE_OF_CHANGE,
    ):
        return max(0.0, abs(actual) - threshold)
    return abs(actual - threshold)


def resolve_zone(tz_name: str) -> ZoneInfo:
    """ZoneInfo for an IANA name; unknown or malformed names fall back to UTC."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning("Unknown timezone %r, using UTC", tz_name)
        return ZoneInfo("UTC")


def contributing_factors(
    context: EvaluationContext,
    tz_name: str = "UTC",
) -> list[str]:
    """Human-readable annotations for the moment of evaluation.

    Uses the configuration's timezone for business hours and weekends.
    Never used to decide whether a condition triggers.
    """
    local = context.current_time.astimezone(resolve_zone(tz_name))
    factors: list[str] = []

    if BUSINESS_HOURS_START <= local.hour < BUSINESS_HOURS_END:
        factors.append("Business hours")
    else:
        factors.append("After hours")

    # Python weekday(): Monday=0 .. Sunday=6
    factors.append("Weekend" if local.weekday() >= 5 else "Weekday")

    weather = context.weather_data or {}
    temperature = weather.get("temperature")
    if temperature is not None:
        if temperature > HIGH_TEMPERATURE_C:
            factors.append("High temperature")
        elif temperature < LOW_TEMPERATURE_C:
            factors.append("Low temperature")

    occupancy = context.occupancy_data or {}
    current = occupancy.get("current_occupancy")
    typical = occupancy.get("typical_occupancy")
    if current is not None and typical:
        if current > typical:
            factors.append("Above typical occupancy")
        elif current < typical:
            factors.append("Below typical occupancy")

    return factors


def _baseline_minutes(period: Optional[str]) -> int:
    """Parse baseline periods like '7d', '12h', '2w' into minutes."""
    if not period:
        return 7 * 24 * 60
    unit = period[-1].lower()
    try:
        amount = int(period[:-1])
    except ValueError:
        return 7 * 24 * 60
    return amount * _BASELINE_PERIODS.get(unit, 24 * 60)


class ConditionEvaluator:
    """Evaluates conditions against an evaluation context.

    Stateless; safe to share between concurrent evaluations.
    """

    def __init__(
        self,
        aggregator: Optional[MetricAggregator] = None,
        anomaly_classifier: Optional[AnomalyClassifier] = None,
    ) -> None:
        self.aggregator = aggregator or MetricAggregator()
        self.anomaly_classifier = anomaly_classifier or ZScoreAnomalyClassifier()

    def evaluate(
        self,
        condition: AlertCondition,
        context: EvaluationContext,
        tz_name: str = "UTC",
    ) -> tuple[ConditionResult, MetricValueResult]:
        """Evaluate one condition.

        Args:
            condition: Condition to evaluate.
            context: Evaluation context.
            tz_name: Configuration timezone for contributing factors.

        Returns:
            (ConditionResult, MetricValueResult). A condition without enough
            data is returned as not met and not evaluable.
        """
        aggregate = self.aggregator.aggregate(
            context.sensor_readings, condition, context.current_time,
        )
        threshold = condition.threshold.value

        if not aggregate.evaluable:
            met = False
            deviation = 0.0
        else:
            met = self.compare(condition, aggregate.value, context)
            deviation = compute_deviation(condition.operator, aggregate.value, threshold)

        result = ConditionResult(
            condition_id=condition.id,
            met=met,
            actual_value=aggregate.value,
            threshold_value=threshold,
            deviation=deviation,
            evaluation_method=condition.operator.value,
            evaluable=aggregate.evaluable,
            data_points=aggregate.data_points,
        )
        snapshot = MetricValueResult(
            metric=condition.metric,
            value=aggregate.value,
            threshold=threshold,
            timestamp=context.current_time,
            evaluation_window=f"{condition.time_aggregation.period} minutes",
            contributing_factors=contributing_factors(context, tz_name),
            evaluable=aggregate.evaluable,
        )
        return result, snapshot

    def compare(
        self,
        condition: AlertCondition,
        actual: float,
        context: EvaluationContext,
    ) -> bool:
        """Apply the condition's operator. `greater_than` is strict."""
        op = condition.operator
        threshold = condition.threshold
        value = threshold.value
        upper = threshold.secondary_value if threshold.secondary_value is not None else value

        if op == ComparisonOperator.GREATER_THAN:
            return actual > value
        if op == ComparisonOperator.LESS_THAN:
            return actual < value
        if op == ComparisonOperator.GREATER_THAN_OR_EQUAL:
            return actual >= value
        if op == ComparisonOperator.LESS_THAN_OR_EQUAL:
            return actual <= value
        if op == ComparisonOperator.EQUALS:
            return abs(actual - value) < EQUALITY_TOLERANCE
        if op == ComparisonOperator.NOT_EQUALS:
            return abs(actual - value) >= EQUALITY_TOLERANCE
        if op == ComparisonOperator.BETWEEN:
            return value <= actual <= upper
        if op == ComparisonOperator.OUTSIDE_RANGE:
            return actual < value or actual > upper
        if op == ComparisonOperator.RATE_OF_CHANGE:
            return abs(actual) > value
        if op == ComparisonOperator.PERCENTAGE_CHANGE:
            baseline = self.baseline_value(condition, context)
            if not baseline:
                return False
            return abs((actual - baseline) / baseline) * 100 > value
        if op == ComparisonOperator.ANOMALY_DETECTED:
            level = threshold.confidence_level or DEFAULT_ANOMALY_CONFIDENCE
            return self.anomaly_classifier.confidence(actual, condition, context) >= level

        logger.warning("Unsupported comparison operator %s", op)
        return False

    def baseline_value(
        self,
        condition: AlertCondition,
        context: EvaluationContext,
    ) -> Optional[float]:
        """Aggregate the historical readings over the condition's baseline period."""
        minutes = _baseline_minutes(condition.threshold.baseline_period)
        aggregation = TimeAggregation(
            function=condition.time_aggregation.function,
            period=minutes,
            minimum_data_points=condition.time_aggregation.minimum_data_points,
        )
        result = self.aggregator.aggregate(
            context.historical_data, condition, context.current_time, aggregation,
        )
        return result.value

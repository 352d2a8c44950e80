"""Metric aggregation.

Reduces the sensor readings that belong to a condition, within the
condition's time window, to a single aggregate value.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

from src.alerts.config import (
    AggregationFunction,
    DEFAULT_PERCENTILE,
    FilterOperator,
    METRIC_SENSOR_KEYWORDS,
)
from src.alerts.models import (
    AlertCondition,
    MetricFilter,
    MetricSelector,
    SensorReading,
    TimeAggregation,
)

logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    """Outcome of aggregating one condition's window.

    `value` is None when the window holds fewer readings than the
    condition's minimum_data_points; such a condition is not evaluable.
    """
    value: Optional[float]
    data_points: int
    readings: list[SensorReading] = field(default_factory=list)

    @property
    def evaluable(self) -> bool:
        return self.value is not None


def reading_matches_metric(reading: SensorReading, metric: MetricSelector) -> bool:
    """Check whether a reading belongs to the selected metric.

    An explicit sensor_id must match exactly; otherwise the metric type's
    keywords are matched against the sensor id and unit.
    """
    if metric.sensor_id:
        return reading.sensor_id == metric.sensor_id

    keywords = METRIC_SENSOR_KEYWORDS.get(metric.type, [metric.type])
    sensor_id = reading.sensor_id.lower()
    unit = reading.unit.lower()
    return any(k in sensor_id or k in unit for k in keywords)


def reading_passes_filter(reading: SensorReading, metric_filter: MetricFilter) -> bool:
    """Apply a single field predicate. Unknown operators never match."""
    try:
        operator = FilterOperator(metric_filter.operator)
    except ValueError:
        logger.warning("Unknown filter operator %r", metric_filter.operator)
        return False

    actual = reading.field_value(metric_filter.field)
    expected = metric_filter.value

    if operator == FilterOperator.EQUALS:
        return actual == expected
    if operator == FilterOperator.NOT_EQUALS:
        return actual != expected
    if operator == FilterOperator.CONTAINS:
        return str(expected).lower() in str(actual).lower()
    if operator == FilterOperator.IN:
        return actual in (expected or [])

    try:
        if operator == FilterOperator.GREATER_THAN:
            return float(actual) > float(expected)
        return float(actual) < float(expected)
    except (TypeError, ValueError):
        return False


def window_readings(
    readings: list[SensorReading],
    current_time: datetime,
    period_minutes: int,
) -> list[SensorReading]:
    """Readings inside [current_time - period, current_time], oldest first."""
    start = current_time - timedelta(minutes=period_minutes)
    inside = [r for r in readings if start <= r.timestamp <= current_time]
    return sorted(inside, key=lambda r: r.timestamp)


def aggregate_values(
    readings: list[SensorReading],
    function: AggregationFunction,
) -> float:
    """Apply an aggregation function to a non-empty, time-ordered window."""
    values = np.array([r.value for r in readings], dtype=float)
    values = values[~np.isnan(values)]
    if values.size == 0:
        return 0.0

    if function == AggregationFunction.SUM:
        return float(np.sum(values))
    if function == AggregationFunction.AVERAGE:
        return float(np.mean(values))
    if function == AggregationFunction.MINIMUM:
        return float(np.min(values))
    if function == AggregationFunction.MAXIMUM:
        return float(np.max(values))
    if function == AggregationFunction.COUNT:
        return float(values.size)
    if function == AggregationFunction.MEDIAN:
        return float(np.median(values))
    if function == AggregationFunction.PERCENTILE:
        return float(np.percentile(values, DEFAULT_PERCENTILE))
    if function == AggregationFunction.STANDARD_DEVIATION:
        return float(np.std(values))
    if function == AggregationFunction.RATE_OF_CHANGE:
        if len(readings) < 2:
            return 0.0
        span = (readings[-1].timestamp - readings[0].timestamp).total_seconds() / 60
        if span <= 0:
            return 0.0
        return float((readings[-1].value - readings[0].value) / span)

    return float(np.mean(values))


class MetricAggregator:
    """Selects, filters, windows and aggregates readings for a condition.

    Pure: the result depends only on the readings, the condition and the
    evaluation instant.
    """

    def select(
        self,
        readings: list[SensorReading],
        condition: AlertCondition,
    ) -> list[SensorReading]:
        """Readings for the condition's metric that pass every filter."""
        return [
            r for r in readings
            if reading_matches_metric(r, condition.metric)
            and all(reading_passes_filter(r, f) for f in condition.filters)
        ]

    def aggregate(
        self,
        readings: list[SensorReading],
        condition: AlertCondition,
        current_time: datetime,
        aggregation: Optional[TimeAggregation] = None,
    ) -> AggregateResult:
        """Aggregate the condition's window ending at current_time.

        Args:
            readings: Candidate readings (live or historical).
            condition: Condition supplying metric, filters and aggregation.
            current_time: End of the window (inclusive).
            aggregation: Override for the condition's own time aggregation.

        Returns:
            AggregateResult; value is None when not evaluable.
        """
        aggregation = aggregation or condition.time_aggregation
        selected = self.select(readings, condition)
        windowed = window_readings(selected, current_time, aggregation.period)

        if not windowed or len(windowed) < aggregation.minimum_data_points:
            logger.debug(
                "Condition %s not evaluable: %d/%d data points",
                condition.id, len(windowed), aggregation.minimum_data_points,
            )
            return AggregateResult(value=None, data_points=len(windowed), readings=windowed)

        value = aggregate_values(windowed, aggregation.function)
        return AggregateResult(value=value, data_points=len(windowed), readings=windowed)

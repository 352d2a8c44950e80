"""JSON-shaped loading and dumping of alert models.

Uses pydantic TypeAdapters over the model dataclasses so raw mappings
(from files, queues or HTTP bodies) are validated and coerced into typed
objects, and results dump back to JSON-compatible structures.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from src.alerts.exceptions import ConfigurationError
from src.alerts.models import (
    AlertConfiguration,
    AlertInstance,
    AlertValidation,
    EscalationPolicy,
    EvaluationContext,
    NotificationLog,
    NotificationSettings,
)

_configuration_adapter = TypeAdapter(AlertConfiguration)
_configurations_adapter = TypeAdapter(list[AlertConfiguration])
_context_adapter = TypeAdapter(EvaluationContext)
_settings_adapter = TypeAdapter(NotificationSettings)
_policy_adapter = TypeAdapter(EscalationPolicy)
_alert_adapter = TypeAdapter(AlertInstance)
_alerts_adapter = TypeAdapter(list[AlertInstance])
_logs_adapter = TypeAdapter(list[NotificationLog])
_validation_adapter = TypeAdapter(AlertValidation)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _validate(adapter: TypeAdapter, data: Any, what: str) -> Any:
    try:
        return adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid {what}: {exc}") from exc


def load_configuration(data: dict) -> AlertConfiguration:
    return _validate(_configuration_adapter, data, "alert configuration")


def load_configurations(data: Any) -> list[AlertConfiguration]:
    """Load one configuration or a list of them."""
    if isinstance(data, dict):
        return [load_configuration(data)]
    return _validate(_configurations_adapter, data, "alert configurations")


def load_context(data: dict) -> EvaluationContext:
    """Load an evaluation context; timestamps without an offset are taken as UTC."""
    context = _validate(_context_adapter, data, "evaluation context")
    context.current_time = _aware(context.current_time)
    for reading in (*context.sensor_readings, *context.historical_data):
        reading.timestamp = _aware(reading.timestamp)
    return context


def load_notification_settings(data: dict) -> NotificationSettings:
    return _validate(_settings_adapter, data, "notification settings")


def load_escalation_policy(data: dict) -> EscalationPolicy:
    return _validate(_policy_adapter, data, "escalation policy")


def load_alert(data: dict) -> AlertInstance:
    return _validate(_alert_adapter, data, "alert instance")


def dump_alert(alert: AlertInstance) -> dict:
    return _alert_adapter.dump_python(alert, mode="json")


def dump_alerts(alerts: list[AlertInstance]) -> list[dict]:
    return _alerts_adapter.dump_python(alerts, mode="json")


def dump_notification_logs(entries: list[NotificationLog]) -> list[dict]:
    return _logs_adapter.dump_python(entries, mode="json")


def dump_validation(validation: AlertValidation) -> dict:
    return _validation_adapter.dump_python(validation, mode="json")


def to_jsonable(value: Any) -> Any:
    """Dump any model value (or list of them) to JSON-compatible data."""
    return TypeAdapter(type(value)).dump_python(value, mode="json")

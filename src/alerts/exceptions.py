"""Alerting exception hierarchy.

Typed exceptions carrying an ErrorCode so callers can tell evaluation,
delivery and lifecycle failures apart without string matching.
"""

from typing import Optional

from src.alerts.config import ErrorCode


class AlertingError(Exception):
    """Base exception for all alerting errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ConfigurationError(AlertingError):
    """Raised when a configuration cannot be evaluated as written."""

    def __init__(
        self,
        message: str = "Invalid alert configuration",
        configuration_id: Optional[str] = None,
    ):
        super().__init__(message, ErrorCode.INVALID_CONFIGURATION)
        self.configuration_id = configuration_id


class ConditionEvaluationError(AlertingError):
    """Raised when a single condition fails to evaluate."""

    def __init__(self, message: str, condition_id: Optional[str] = None):
        super().__init__(message, ErrorCode.CONDITION_EVALUATION_FAILED)
        self.condition_id = condition_id


class DeliveryError(AlertingError):
    """Raised by channel adapters when a provider rejects a send."""

    def __init__(self, message: str, channel: Optional[str] = None):
        super().__init__(message, ErrorCode.DELIVERY_FAILED)
        self.channel = channel


class DeliveryTimeoutError(DeliveryError):
    """Raised when a channel does not answer within its time budget."""

    def __init__(self, message: str, channel: Optional[str] = None):
        super().__init__(message, channel)
        self.error_code = ErrorCode.DELIVERY_TIMEOUT


class InvalidTransitionError(AlertingError):
    """Raised on an illegal alert lifecycle change."""

    def __init__(self, message: str, alert_id: Optional[str] = None):
        super().__init__(message, ErrorCode.INVALID_TRANSITION)
        self.alert_id = alert_id

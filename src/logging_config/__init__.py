"""Structured logging for the building alert service.

JSON or console output, alert-scoped context binding, and timing of
evaluation and delivery calls.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import (
    AlertLogContext,
    generate_evaluation_id,
    get_context_dict,
)
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import configure_logging

__all__ = [
    "AlertLogContext",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PerformanceTimer",
    "configure_logging",
    "generate_evaluation_id",
    "get_context_dict",
    "log_performance",
]

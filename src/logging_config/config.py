"""Logging Configuration.

Settings for structured logging, log levels, and output formats.
"""

from dataclasses import dataclass
from enum import Enum


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_threshold_ms: float = 1000.0
    service_name: str = "building-alerts"
    stream: str = "stderr"   # stdout is reserved for CLI output


DEFAULT_LOGGING_CONFIG = LoggingConfig()

LOG_LEVEL_ENV = "BUILDING_ALERTS_LOG_LEVEL"
LOG_FORMAT_ENV = "BUILDING_ALERTS_LOG_FORMAT"

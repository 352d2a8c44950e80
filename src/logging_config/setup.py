"""Logging Setup.

One-call configuration for the building alert service. JSON lines for
deployed workers, colored console output for local runs.
"""

import json
import logging
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from src.logging_config.config import (
    DEFAULT_LOGGING_CONFIG,
    LOG_FORMAT_ENV,
    LOG_LEVEL_ENV,
    LogFormat,
    LoggingConfig,
    LogLevel,
)
from src.logging_config.context import get_context_dict

_RECORD_EXTRAS = ("duration_ms", "channel", "recipient", "severity", "extra_data")


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    One JSON object per line: timestamp, level, logger, message, service,
    plus the bound alert context and selected record extras.
    """

    def __init__(self, service_name: str = "building-alerts", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if self.include_caller:
            log_entry["module"] = record.module
            log_entry["function"] = record.funcName
            log_entry["line"] = record.lineno

        ctx = get_context_dict()
        if ctx:
            log_entry.update(ctx)

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in _RECORD_EXTRAS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored console formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S.%f")[:-3]

        ctx = get_context_dict()
        ctx_str = ""
        if ctx:
            ctx_str = " [" + ", ".join(f"{k}={v}" for k, v in ctx.items()) + "]"

        line = (
            f"{color}{timestamp} {record.levelname:8s}{self.RESET} "
            f"{record.name}: {record.getMessage()}{ctx_str}"
        )

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)

        return line


def resolve_config(config: Optional[LoggingConfig] = None) -> LoggingConfig:
    """Apply BUILDING_ALERTS_LOG_LEVEL / BUILDING_ALERTS_LOG_FORMAT overrides."""
    config = config or DEFAULT_LOGGING_CONFIG

    env_level = os.environ.get(LOG_LEVEL_ENV, "").upper()
    if env_level in LogLevel.__members__:
        config = replace(config, level=LogLevel(env_level))

    env_format = os.environ.get(LOG_FORMAT_ENV, "").lower()
    if env_format in [f.value for f in LogFormat]:
        config = replace(config, format=LogFormat(env_format))

    return config


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure structured logging for the alert service.

    Call once at startup. Replaces the root logger's handlers.

    Args:
        config: Logging configuration. Uses defaults if not provided;
                environment variables override level and format.
    """
    config = resolve_config(config)

    if config.format == LogFormat.JSON:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        formatter = ConsoleFormatter()

    stream = sys.stdout if config.stream == "stdout" else sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.value))

    for noisy in ("urllib3", "httpx", "httpcore", "twilio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

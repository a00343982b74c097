"""
Logging setup for MemPoke.

Every module logs through ``logging.getLogger(__name__)``; this package
configures the root handler once at startup, either as JSON lines or as
plain text, with the service name injected in each record.
"""

import json
import logging
import os
import sys
from datetime import datetime

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(name)s] - "
    "[%(module)s.%(funcName)s:%(lineno)d] - %(message)s"
)

LOG_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

DEFAULT_LOG_LEVEL = "INFO"
LOG_OFF_LEVEL = "OFF"

# Attributes of every LogRecord, anything else was passed through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "service_name", "taskName"}


class ServiceNameFilter(logging.Filter):
    """Filter to inject service name into log records."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def resolve_level(log_level: str) -> int:
    if log_level.upper() == LOG_OFF_LEVEL:
        return logging.CRITICAL + 1
    return LOG_LEVELS.get(log_level.upper(), logging.INFO)


def setup_logging(
    service_name: str = "mempoke",
    log_level: str = DEFAULT_LOG_LEVEL,
    log_format: str = "json",
    stream=None,
) -> logging.Logger:
    """
    Configure the root logger.

    ``LOG_LEVEL`` and ``LOG_FORMAT`` environment variables take precedence over
    the arguments. Calling it again replaces the previous handler.
    """
    log_level = os.getenv("LOG_LEVEL", log_level)
    log_format = os.getenv("LOG_FORMAT", log_format).lower()

    handler = logging.StreamHandler(stream or sys.stdout)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    handler.addFilter(ServiceNameFilter(service_name))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_mempoke_handler", False):
            root.removeHandler(existing)
    handler._mempoke_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(resolve_level(log_level))

    # aiohttp access logs are noise for a probe
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    return root


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "JSONFormatter",
    "ServiceNameFilter",
    "resolve_level",
    "setup_logging",
]

"""Structured logging configuration for the agent service."""

import json
import logging
import logging.config
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import Settings

SERVICE_NAME = "agent-service"

# Context keys also copied to the top level of a log line
LIFTED_CONTEXT_KEYS = ("run_id", "provider")


class JSONFormatter(logging.Formatter):
    """One JSON object per record; run and provider ids are searchable."""

    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self._service,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        context = getattr(record, "context", None)
        if context is not None:
            log_data["context"] = context
            if isinstance(context, dict):
                for key in LIFTED_CONTEXT_KEYS:
                    if context.get(key):
                        log_data[key] = context[key]

        return json.dumps(log_data, default=str)


def build_logging_config(settings: Settings) -> dict[str, Any]:
    """dictConfig for the given settings.

    Logs go to stdout, and to a rotating file unless ``log_file`` is None.
    Loggers named in ``log_quiet_loggers`` never log below
    ``log_quiet_level``.
    """
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        },
    }
    if settings.log_file is not None:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(settings.log_file),
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "formatter": "json",
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "agent_service.logging_config.JSONFormatter"},
        },
        "handlers": handlers,
        "loggers": {
            name: {"level": settings.log_quiet_level.upper()}
            for name in settings.log_quiet_loggers
        },
        "root": {
            "level": settings.log_level.upper(),
            "handlers": sorted(handlers),
        },
    }


def setup_logging(settings: Settings | None = None) -> None:
    """
    Setup structured logging for the application.

    Args:
        settings: Logging settings. Defaults to Settings.from_env().
    """
    settings = settings or Settings.from_env()
    if settings.log_file is not None:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(build_logging_config(settings))


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)

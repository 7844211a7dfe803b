"""
Logging configuration.

Builds the dictConfig used by the application: console output always, a
rotating file handler when enabled, and the request correlation id on every
record.
"""
import logging.config
import os
from typing import Any, Dict

from ledgermatch.config.settings import settings

LOG_FORMAT = "%(asctime)s [%(correlation_id)s] [%(name)s] %(levelname)s: %(message)s"


def get_logging_config() -> Dict[str, Any]:
    """Return the logging dictConfig for the current settings."""
    handlers = ["console"]

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "correlation_id": {
                "()": "asgi_correlation_id.CorrelationIdFilter",
                "uuid_length": 32,
                "default_value": "-",
            },
        },
        "formatters": {
            "standard": {
                "format": LOG_FORMAT,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "filters": ["correlation_id"],
                "formatter": "standard",
            },
        },
        "loggers": {
            "ledgermatch": {
                "level": settings.effective_log_level,
                "handlers": handlers,
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "INFO" if settings.LOG_SQL_QUERIES else "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
        },
        "root": {
            "level": settings.effective_log_level,
            "handlers": handlers,
        },
    }

    if settings.LOG_FILE_ENABLED:
        log_dir = os.path.dirname(settings.LOG_FILE_PATH)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": settings.LOG_FILE_PATH,
            "maxBytes": settings.LOG_FILE_MAX_BYTES,
            "backupCount": settings.LOG_FILE_BACKUP_COUNT,
            "encoding": "utf8",
            "filters": ["correlation_id"],
            "formatter": "standard",
        }
        handlers.append("file")

    return config


LOGGING = get_logging_config()


def setup_logging() -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config())

"""
Logging for LedgerMatch.

`setup_logging()` must run before the application modules are imported;
main.py calls it first.
"""
from .config import LOGGING, get_logging_config, setup_logging
from .logger import LoggerMixin, app_logger, get_logger, log_exception, log_operation

__all__ = [
    "LOGGING",
    "get_logging_config",
    "setup_logging",
    "LoggerMixin",
    "app_logger",
    "get_logger",
    "log_exception",
    "log_operation",
]

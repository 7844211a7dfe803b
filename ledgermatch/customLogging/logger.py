"""
Logger helpers.

Module loggers live under the "ledgermatch" namespace so the dictConfig in
config.py governs all of them. Business events (an ingestion, a matching
run, a decision, a deletion stage) go through log_operation so they share
one message shape and carry their context as structured extras.
"""
import logging
import time
from functools import lru_cache
from typing import Optional


@lru_cache(maxsize=128)
def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger for `name`, usually a module's __name__; the application logger when omitted."""
    return logging.getLogger(name or "ledgermatch")


class LoggerMixin:
    """
    Gives a class a `logger` named after its module.

    Example:
        class AgedDataDeletion(GuardedOperation):  # GuardedOperation mixes this in
            ...
            self.logger.warning("previewed")
    """

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.__class__.__module__)


def log_operation(
    logger: logging.Logger,
    operation: str,
    success: bool = True,
    started_at: Optional[float] = None,
    **context
) -> None:
    """
    Log the outcome of a business operation.

    Args:
        logger: Logger to write to.
        operation: Event name, e.g. "bank_ingestion" or "reconciliation_run".
        success: ERROR level when False.
        started_at: time.perf_counter() value taken when the operation began;
            adds duration_s to the context.
        **context: Structured fields. Avoid LogRecord attribute names such as
            `filename`; use `file_name`.

    Example:
        log_operation(logger, "bank_ingestion", file_name="jan.ofx", items_imported=10)
    """
    if started_at is not None:
        context["duration_s"] = round(time.perf_counter() - started_at, 4)

    level = logging.INFO if success else logging.ERROR
    message = f"{operation} {'completed' if success else 'failed'}"
    if context:
        message += ": " + ", ".join(f"{key}={value}" for key, value in context.items())

    logger.log(level, message, extra=context)


def log_exception(
    logger: logging.Logger,
    message: str,
    exc: Exception,
    **context
) -> None:
    """Log an exception with its traceback and structured context."""
    logger.error(
        f"{message}: {exc.__class__.__name__} - {exc}",
        exc_info=exc,
        extra={
            "error_type": exc.__class__.__name__,
            "error_message": str(exc),
            **context,
        }
    )


# Root application logger
app_logger = get_logger("ledgermatch")

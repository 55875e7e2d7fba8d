"""Categorised logging on top of the standard library logger."""
import logging
import sys
from enum import Enum
from typing import Any


class LogCategory(str, Enum):
    """Functional area a log record belongs to."""
    APPLICATION = "application"
    MONITOR = "monitor"
    DOMAIN = "domain"
    SSL = "ssl"
    NOTIFICATION = "notification"
    SYSTEM = "system"


class CategoryFilter(logging.Filter):
    """Default the ``category`` attribute so the formatter can always use it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "category"):
            record.category = LogCategory.APPLICATION.value
        if not hasattr(record, "context"):
            record.context = {}
        return True


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(category)s] %(message)s"


def configure_logging(level: str = "INFO"):
    """Install the root handler used by the service and the CLI."""
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(CategoryFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def log_event(
    logger: logging.Logger,
    level: int,
    category: LogCategory,
    message: str,
    **context: Any,
):
    """Log a message tagged with a category and structured context.

    Context values are appended to the message so they stay visible with a
    plain formatter, and are also attached to the record for handlers that
    want them.
    """
    if context:
        details = ", ".join(f"{key}={value}" for key, value in context.items())
        message = f"{message} ({details})"
    logger.log(level, message, extra={"category": category.value, "context": context})

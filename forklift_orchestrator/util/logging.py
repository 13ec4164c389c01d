"""
Logging configuration using rich.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

from forklift_orchestrator.util.redact import redact_sensitive

PACKAGE_LOGGER = "forklift_orchestrator"


class RedactingFilter(logging.Filter):
    """Mask credentials in log records before they reach any handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_sensitive(record.getMessage())
        record.args = None
        return True


def configure_logging(level: str | int = "INFO", console: Console | None = None) -> logging.Logger:
    """
    Install a RichHandler on the package logger.

    Calling it again replaces the previous handler instead of stacking a new one.

    Args:
        level: Log level name or number
        console: Console to log to (defaults to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level if isinstance(level, int) else level.upper())

    for handler in list(logger.handlers):
        if getattr(handler, "_forklift_orchestrator", False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.addFilter(RedactingFilter())
    handler._forklift_orchestrator = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger

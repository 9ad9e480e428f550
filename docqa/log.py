"""Structured logging setup shared by scripts and services."""
import logging
import sys

import structlog

from docqa import config


def configure_logging(level: str = None) -> None:
    """Configure structlog to emit JSON lines through the stdlib logger.

    Args:
        level: Log level name (default from config)
    """
    level_name = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )

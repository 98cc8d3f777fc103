"""
Logging configuration for DriftFix.
"""
import logging
import sys
from typing import Optional

import structlog

from .settings import get_settings

_configured = False


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        log_level: Log level override (optional)
        log_format: "json" or "console" override (optional)
    """
    global _configured
    monitoring = get_settings().monitoring
    level = (log_level or monitoring.log_level).upper()
    fmt = log_format or monitoring.log_format

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
            if fmt == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level)
    )
    _configured = True


def get_logger(name: str):
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog bound logger
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)

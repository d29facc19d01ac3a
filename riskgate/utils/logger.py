"""
Logging configuration for riskgate.

Provides structured logging for production monitoring and debugging.
"""

import logging
import sys
from typing import Optional


def get_logger(name: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (defaults to 'riskgate')
        level: Log level name; defaults to APP_LOG_LEVEL

    Returns:
        Configured logger instance
    """
    logger_name = name or "riskgate"
    logger = logging.getLogger(logger_name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if level is None:
            from ..config import settings
            level = settings.app_log_level
        logger.setLevel(level)

    return logger

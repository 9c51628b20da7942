"""
Logging Configuration Module

Centralized logging setup for the whale monitor
"""

import logging
import sys

LOGGER_NAME = "whale_monitor"


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure application-wide logging

    Module loggers created with logging.getLogger(__name__) live under the
    "whale_monitor" namespace and inherit this handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format for production log aggregation

    Example:
        setup_logging(level="DEBUG", json_format=False)
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        # JSON formatter for production (log aggregation)
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "function": "%(funcName)s", "message": "%(message)s"}',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Prevent propagation to root logger
    logger.propagate = False


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """
    Get configured logger instance

    Args:
        name: Logger name (default: "whale_monitor")

    Returns:
        logging.Logger: Configured logger

    Example:
        logger = get_logger()
        logger.info("Monitor started")
    """
    return logging.getLogger(name)

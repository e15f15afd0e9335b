"""
Logging utility module for CertChain Backend.
Provides structured logging configuration for the application.
"""

import logging
import sys
from typing import Optional


def setup_logger(name: str = "certchain", level: str = "INFO") -> logging.Logger:
    """
    Setup and configure logger for the application.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Prevent duplicate handlers if logger already exists
    if logger.handlers:
        return logger

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Component loggers (certchain.*) propagate here, not to root
    logger.propagate = False

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional component name. If not provided, returns the main app logger.

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"certchain.{name}")
    return logging.getLogger("certchain")


# Create default logger
logger = get_logger()

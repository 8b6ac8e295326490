"""
Unified Logging Configuration

This module sets up a centralized logging system for the gateway core and
everything built on top of it (upstream clients, services, HTTP boundary).
All modules should import and use the logger from this module instead of
using print() statements.

Usage:
    from gateway_core.logging import logger, get_logger

    logger.info("Gateway started")

    log = get_logger(__name__)
    log.debug("Cache hit for 'tickers'")

Log Levels (from most to least verbose):
    DEBUG    - Cache hits, coalesced refreshes, rate limiter delays
    INFO     - Completed refreshes, service lifecycle
    WARNING  - Empty upstream responses, stale data served
    ERROR    - Failed refreshes, failed fan-out tasks, unclassified exceptions

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "gatewaycore"


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include logger name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] gatewaycore: Application started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

from gateway_core.config import settings  # noqa: E402

logger = setup_logging(log_level=settings.log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Logger instance named "gatewaycore.<name>"

    Example:
        # In gateway_core/cache.py:
        logger = get_logger(__name__)  # "gatewaycore.gateway_core.cache"
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: str) -> None:
    """
    Change the log level at runtime.

    Args:
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(upstream: str, path: str, params: dict = None) -> None:
    """
    Log an upstream request with consistent formatting.

    Example:
        >>> log_api_request("marketCap", "/coins", {"limit": 100})
        [DEBUG] API Request: marketCap /coins | Params: {'limit': 100}
    """
    if params:
        logger.debug(f"API Request: {upstream} {path} | Params: {params}")
    else:
        logger.debug(f"API Request: {upstream} {path}")


def log_api_response(upstream: str, path: str, status: int, response_time: float = None) -> None:
    """
    Log an upstream response with status and timing information.

    Example:
        >>> log_api_response("marketCap", "/coins", 200, 0.342)
        [DEBUG] API Response: marketCap /coins | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {upstream} {path} | Status: {status}{time_str}")


logger.debug("Logging system initialized")

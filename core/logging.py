"""
Unified Logging Configuration

This module sets up a centralized logging system for the entire application.
All modules should use loggers from this module instead of print() statements.

Usage:
    from core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Fetching quotes")

Log levels used by the engine:
    DEBUG    - Provider requests/responses, cache hits, misses and cache problems
    INFO     - Successful fallback resolution, service lifecycle
    WARNING  - A provider failed during fallback (next candidate is tried)
    ERROR    - Every candidate failed

Configuration:
    The application calls ``setup_logging(settings.log_level)`` once on
    startup. Until then the "pricedesk" logger inherits Python's defaults.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "pricedesk"

logger = logging.getLogger(ROOT_LOGGER_NAME)


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

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] pricedesk: Application started
    """
    if log_format is None:
        format_parts = []
        if include_timestamp:
            format_parts.append("%(asctime)s")
        format_parts.append("[%(levelname)s]")
        if include_module:
            format_parts.append("%(name)s:")
        format_parts.append("%(message)s")
        log_format = " ".join(format_parts)

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )
    logger.setLevel(level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child of the application logger.

    Example:
        # In providers/yahoo/api_client.py:
        logger = get_logger(__name__)  # "pricedesk.providers.yahoo.api_client"
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(provider: str, endpoint: str, params: dict = None) -> None:
    """
    Log an outbound provider request.

    Example:
        >>> log_api_request("coingecko", "/simple/price", {"ids": "bitcoin"})
        [DEBUG] API Request: coingecko /simple/price | Params: {'ids': 'bitcoin'}
    """
    if params:
        logger.debug(f"API Request: {provider} {endpoint} | Params: {params}")
    else:
        logger.debug(f"API Request: {provider} {endpoint}")


def log_api_response(provider: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Log a provider response with status and timing information.

    Example:
        >>> log_api_response("yahoo", "/v8/finance/chart/AAPL", 200, 0.342)
        [DEBUG] API Response: yahoo /v8/finance/chart/AAPL | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {provider} {endpoint} | Status: {status}{time_str}")


def log_fallback_attempt(operation: str, provider: str, outcome: str, detail: str = None) -> None:
    """
    Log one FallbackResolver attempt.

    Successful attempts log at INFO, failures at WARNING.

    Example:
        >>> log_fallback_attempt("quotes", "coingecko", "network", "timeout")
        [WARNING] Fallback: quotes via coingecko -> network | timeout
    """
    detail_str = f" | {detail}" if detail else ""
    level = logging.INFO if outcome in ("success", "cache_hit") else logging.WARNING
    logger.log(level, f"Fallback: {operation} via {provider} -> {outcome}{detail_str}")

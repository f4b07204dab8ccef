"""
Logging configuration for the gas funding worker
"""
import logging
import sys
import time
from collections import defaultdict
from typing import Optional

from infrastructure.config.settings import settings


class DeduplicationFilter(logging.Filter):
    """Filter to prevent repetitive log messages from cluttering the logs"""

    def __init__(self, max_age: int = 60, max_count: int = 3):
        super().__init__()
        self.max_age = max_age  # seconds
        self.max_count = max_count
        self.message_cache = defaultdict(list)

    def filter(self, record):
        # Skip deduplication for WARNING and above
        if record.levelno >= logging.WARNING:
            return True

        message_key = f"{record.levelname}:{record.getMessage()}"
        current_time = time.time()

        self.message_cache[message_key] = [
            timestamp for timestamp in self.message_cache[message_key]
            if current_time - timestamp < self.max_age
        ]

        if len(self.message_cache[message_key]) >= self.max_count:
            return False

        self.message_cache[message_key].append(current_time)
        return True


def setup_logging(
    name: str = "gas_funding",
    level: Optional[str] = None,
    format_string: Optional[str] = None,
    enable_deduplication: bool = True,
) -> logging.Logger:
    """
    Setup logging for the worker process

    Args:
        name: Logger name
        level: Logging level (overrides settings)
        format_string: Log format (overrides settings)
        enable_deduplication: Whether to drop repeated INFO/DEBUG lines

    Returns:
        Configured logger instance
    """
    log_level = level or settings.logging.log_level
    log_format = format_string or settings.logging.log_format

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Root logger carries every module logger created with get_logger()
    logging.basicConfig(
        level=numeric_level,
        format=log_format,
        stream=sys.stdout,
    )

    root = logging.getLogger()
    if enable_deduplication:
        for handler in root.handlers:
            if not any(isinstance(f, DeduplicationFilter) for f in handler.filters):
                handler.addFilter(DeduplicationFilter(max_age=60, max_count=3))

    _configure_external_loggers()

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    return logger


def _configure_external_loggers():
    """Configure logging levels for external libraries to reduce noise"""

    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)

    logging.getLogger('web3').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)

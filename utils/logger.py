"""
============================================================================
LIVENESS SWEEP - LOGGING UTILITY
============================================================================
loguru configuration: a console sink plus optional rotating file and
error-only sinks. Components obtain a bound logger through get_logger()
so every line carries the component name.
============================================================================
"""

import asyncio
import sys
import time
from functools import wraps
from typing import Optional

from loguru import logger

from config.settings import LoggingSettings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[component]} | "
    "{name}:{function}:{line} - {message}"
)

# Default component for records emitted through the unbound logger
logger.configure(extra={"component": "app"})


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

def setup_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure logging sinks.

    Args:
        settings: Logging section of the application settings. A default
            LoggingSettings is used when omitted.
    """
    settings = settings or LoggingSettings()

    logger.remove()
    log_level = settings.level.value

    if settings.console_enabled:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT,
            level=log_level,
            colorize=settings.console_colored,
            backtrace=True,
            diagnose=False,
        )

    if settings.file_enabled:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.file_path,
            format=FILE_FORMAT,
            level=log_level,
            rotation=settings.file_rotation,
            retention=settings.file_retention,
            compression="zip",
            serialize=settings.json_enabled,
            backtrace=True,
            diagnose=False,
        )

    if settings.error_file_enabled:
        settings.error_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.error_file_path,
            format=FILE_FORMAT,
            level="ERROR",
            rotation="1 day",
            retention="7 days",
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    logger.info(
        f"Logging initialized: level={log_level}, "
        f"console={settings.console_enabled}, file={settings.file_enabled}"
    )


def get_logger(name: Optional[str] = None):
    """
    Get logger instance bound to a component name.

    Args:
        name: Component name shown in every log line

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(component=name)
    return logger


# ============================================================================
# LOG DECORATORS
# ============================================================================

def log_execution_time(func):
    """
    Decorator to log how long a coroutine or function took.
    """

    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
            logger.debug(
                f"{func.__qualname__} executed in "
                f"{time.perf_counter() - start_time:.4f} seconds"
            )
            return result
        except Exception as e:
            logger.error(
                f"{func.__qualname__} failed after "
                f"{time.perf_counter() - start_time:.4f} seconds: {e}"
            )
            raise

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
            logger.debug(
                f"{func.__qualname__} executed in "
                f"{time.perf_counter() - start_time:.4f} seconds"
            )
            return result
        except Exception as e:
            logger.error(
                f"{func.__qualname__} failed after "
                f"{time.perf_counter() - start_time:.4f} seconds: {e}"
            )
            raise

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper

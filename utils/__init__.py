"""
Utilities Package for Liveness Sweep

Logging setup, time and channel helpers, and boundary validators.
"""

from utils.logger import get_logger, setup_logging, log_execution_time
from utils.helpers import TimeHelper, ChannelHelper, PerformanceHelper

__all__ = [
    "get_logger",
    "setup_logging",
    "log_execution_time",
    "TimeHelper",
    "ChannelHelper",
    "PerformanceHelper",
]

"""
============================================================================
LIVENESS SWEEP - HELPERS UTILITY
============================================================================
Time, channel-masking and process helpers shared across the project.
============================================================================
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional

import psutil

from config.constants import CHANNEL_LOG_PREFIX


# ============================================================================
# TIME UTILITIES
# ============================================================================

class TimeHelper:
    """
    Time and date manipulation utilities.

    Timestamps are stored as naive UTC datetimes so that values read back
    from SQLite and PostgreSQL compare the same way.
    """

    @staticmethod
    def get_utc_now() -> datetime:
        """Get current UTC datetime (naive)."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def to_naive_utc(dt: datetime) -> datetime:
        """Normalize an aware or naive datetime to naive UTC."""
        if dt.tzinfo is not None:
            return dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt

    @staticmethod
    def to_epoch_millis(dt: datetime) -> int:
        """Milliseconds since the epoch for a naive UTC datetime."""
        return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)

    @staticmethod
    def isoformat(dt: Optional[datetime]) -> Optional[str]:
        """ISO-8601 with an explicit UTC offset, or None."""
        if dt is None:
            return None
        return dt.replace(tzinfo=timezone.utc).isoformat()

    @staticmethod
    def seconds_to_human_readable(seconds: int) -> str:
        """
        Convert seconds to human-readable format.

        Args:
            seconds: Number of seconds

        Returns:
            Human-readable string (e.g., "2h 30m 15s")
        """
        if seconds < 0:
            return "0s"

        days, remainder = divmod(seconds, 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes, secs = divmod(remainder, 60)

        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            parts.append(f"{secs}s")

        return " ".join(parts)


# ============================================================================
# CHANNEL UTILITIES
# ============================================================================

class ChannelHelper:
    """
    Helpers for opaque notification channels (push tokens).
    """

    @staticmethod
    def mask(channel: Optional[str]) -> str:
        """Shorten a channel token for log output."""
        if not channel:
            return "<none>"
        if len(channel) <= CHANNEL_LOG_PREFIX:
            return channel
        return f"{channel[:CHANNEL_LOG_PREFIX]}..."

    @staticmethod
    def unique(channels: Iterable[Optional[str]]) -> List[str]:
        """
        Drop empty entries and duplicates, keeping first-seen order.
        """
        seen = set()
        result = []
        for channel in channels:
            if not channel or channel in seen:
                continue
            seen.add(channel)
            result.append(channel)
        return result


# ============================================================================
# PERFORMANCE UTILITIES
# ============================================================================

class PerformanceHelper:
    """
    Process resource helpers.
    """

    @staticmethod
    def get_memory_usage() -> float:
        """
        Get current process memory usage.

        Returns:
            Resident memory in MB
        """
        process = psutil.Process()
        return process.memory_info().rss / 1024 / 1024

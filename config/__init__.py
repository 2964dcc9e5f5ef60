"""
Configuration Package for Liveness Sweep

This package contains all configuration-related modules including:
- Settings management with environment variable support
- Constants and enums used throughout the application
"""

from config.settings import (
    Settings,
    DatabaseSettings,
    PushSettings,
    SweepSettings,
    LoggingSettings,
    ServerSettings,
    get_settings,
)

from config.constants import (
    LivenessState,
    MessageType,
    ChannelStatus,
    DeliveryFailureKind,
    INVALID_TOKEN_ERROR_CODES,
    TRANSIENT_HTTP_STATUSES,
)

__all__ = [
    # Settings
    "Settings",
    "DatabaseSettings",
    "PushSettings",
    "SweepSettings",
    "LoggingSettings",
    "ServerSettings",
    "get_settings",

    # Constants
    "LivenessState",
    "MessageType",
    "ChannelStatus",
    "DeliveryFailureKind",
    "INVALID_TOKEN_ERROR_CODES",
    "TRANSIENT_HTTP_STATUSES",
]

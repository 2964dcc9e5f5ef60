"""
Exceptions Package for Liveness Sweep

Provides the exception hierarchy for error handling
throughout the application.
"""

from exceptions.base import (
    LivenessMonitorException,
    ConfigurationError,
    InitializationError,
)

from exceptions.database import (
    DatabaseException,
    DatabaseConnectionError,
    DatabaseQueryError,
    DatabaseNotFoundError,
    SnapshotUnavailableError,
)

from exceptions.delivery import (
    DeliveryException,
    TokenInvalidError,
    TransientDeliveryError,
    DeliveryTimeoutError,
)

from exceptions.validation import (
    ValidationException,
    MissingFieldError,
    InvalidFormatError,
)

__all__ = [
    # Base exceptions
    "LivenessMonitorException",
    "ConfigurationError",
    "InitializationError",

    # Database exceptions
    "DatabaseException",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseNotFoundError",
    "SnapshotUnavailableError",

    # Delivery exceptions
    "DeliveryException",
    "TokenInvalidError",
    "TransientDeliveryError",
    "DeliveryTimeoutError",

    # Validation exceptions
    "ValidationException",
    "MissingFieldError",
    "InvalidFormatError",
]

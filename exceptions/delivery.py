"""
Delivery Exception Classes for Liveness Sweep

Classified failures raised by the push transport. A permanent failure
(``TokenInvalidError``) means the channel must never be used again; every
other failure is transient and the device stays eligible for the next cycle.
"""

from __future__ import annotations

from typing import Any, Optional

from config.constants import CHANNEL_LOG_PREFIX, DeliveryFailureKind
from exceptions.base import LivenessMonitorException


class DeliveryException(LivenessMonitorException):
    """
    Base Delivery Exception

    Parent class for all push delivery failures.
    """

    default_error_code = 4000
    kind: DeliveryFailureKind = DeliveryFailureKind.TRANSIENT

    def __init__(
        self,
        message: str = "Delivery failed",
        channel: Optional[str] = None,
        status_code: Optional[int] = None,
        provider_code: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize delivery exception.

        Args:
            message: Error message
            channel: Target channel (masked before it is stored)
            status_code: HTTP status returned by the push service
            provider_code: Error code reported by the push service
            **kwargs: Additional arguments
        """
        super().__init__(message, **kwargs)

        self.status_code = status_code
        self.provider_code = provider_code

        if channel:
            self.details["channel"] = channel[:CHANNEL_LOG_PREFIX] + "..."

        if status_code is not None:
            self.details["status_code"] = status_code

        if provider_code:
            self.details["provider_code"] = provider_code

    @property
    def is_permanent(self) -> bool:
        return self.kind is DeliveryFailureKind.TOKEN_INVALID


class TokenInvalidError(DeliveryException):
    """
    Token Invalid Error

    The channel is revoked or was never registered (app removed).
    """

    default_error_code = 4001
    default_recoverable = False
    kind = DeliveryFailureKind.TOKEN_INVALID


class TransientDeliveryError(DeliveryException):
    """
    Transient Delivery Error

    Push service unreachable, rate limited or failing server-side.
    """

    default_error_code = 4002
    kind = DeliveryFailureKind.TRANSIENT


class DeliveryTimeoutError(DeliveryException):
    """
    Delivery Timeout Error

    The send did not complete within the operation timeout.
    """

    default_error_code = 4003
    kind = DeliveryFailureKind.TIMEOUT

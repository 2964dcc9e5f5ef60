"""
Constants Module for Liveness Sweep

Enumerations and static values shared by the sweep components,
the registry and the HTTP surface.
"""

from __future__ import annotations

from enum import Enum
from typing import Final, FrozenSet


class LivenessState(str, Enum):
    """
    Liveness State Enumeration

    The single source of truth for a device's classification.
    ``BLOCKED`` is terminal for the evaluator.
    """

    UNKNOWN = "unknown"
    RESPONDING = "responding"
    OFFLINE = "offline"
    SUSPECTED = "suspected"
    BLOCKED = "blocked"

    @property
    def is_responding(self) -> bool:
        """Legacy ``isResponding`` flag, derived from the state."""
        return self is LivenessState.RESPONDING


class MessageType(str, Enum):
    """Payload types sent through the push transport."""

    PROBE = "probe"
    POLICY_ALERT = "policy_alert"
    STATUS_CHECK = "status_check"


class ChannelStatus(str, Enum):
    """Result of an on-demand channel status check."""

    ACTIVE = "active"
    DELETED = "deleted"
    OFFLINE = "offline"


class DeliveryFailureKind(str, Enum):
    """Classification of a failed delivery."""

    TOKEN_INVALID = "token_invalid"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"


# Error codes reported by the push service for a revoked or unknown token
INVALID_TOKEN_ERROR_CODES: Final[FrozenSet[str]] = frozenset({
    "UNREGISTERED",
    "INVALID_ARGUMENT",
    "invalid-registration-token",
    "registration-token-not-registered",
})

# HTTP statuses worth retrying on a later sweep
TRANSIENT_HTTP_STATUSES: Final[FrozenSet[int]] = frozenset({
    408, 429, 500, 502, 503, 504,
})

# Characters of a channel token shown in logs
CHANNEL_LOG_PREFIX: Final[int] = 12

"""
Base Exception Classes for Liveness Sweep

Root of the exception hierarchy. Registry, delivery and validation
errors all derive from LivenessMonitorException so that the sweep,
the report server and main can catch one type and log it uniformly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class LivenessMonitorException(Exception):
    """
    Base Exception Class

    Attributes:
        message: Human-readable error message
        error_code: Numeric code, grouped by thousands per family
            (1xxx startup, 2xxx registry, 3xxx validation, 4xxx delivery)
        details: Structured context; channel tokens are stored masked
        cause: The underlying exception, if any
        recoverable: False when retrying on the next sweep cycle cannot help
    """

    default_error_code: int = 1000
    default_recoverable: bool = True

    def __init__(
        self,
        message: str = "An error occurred",
        error_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.raised_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form, used in sweep reports and HTTP error bodies."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
            "raised_at": self.raised_at.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }

    def log_format(self) -> str:
        """Single-line form for log messages."""
        parts = [
            self.__class__.__name__,
            f"code={self.error_code}",
            self.message,
        ]

        if self.details:
            parts.append(f"details={self.details}")

        if self.cause:
            parts.append(f"cause={self.cause!r}")

        return " | ".join(parts)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code}, "
            f"details={self.details})"
        )


class ConfigurationError(LivenessMonitorException):
    """
    Configuration Error

    Settings could not be loaded or failed validation at startup.
    """

    default_error_code = 1100
    default_recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if config_key:
            self.details["config_key"] = config_key


class InitializationError(LivenessMonitorException):
    """
    Initialization Error

    A component failed to start (registry, transport, report server).
    """

    default_error_code = 1200
    default_recoverable = False

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if component:
            self.details["component"] = component

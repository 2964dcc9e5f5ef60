"""
Validation Exception Classes for Liveness Sweep

Raised at the HTTP boundary when an inbound report or heartbeat
payload is malformed. Such input never reaches the evaluator.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import LivenessMonitorException


class ValidationException(LivenessMonitorException):
    """
    Base Validation Exception

    Parent class for all validation-related exceptions.
    """

    default_error_code = 3000
    default_recoverable = True

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize validation exception.

        Args:
            message: Error message
            field: The field that failed validation
            value: The invalid value (sanitized)
            **kwargs: Additional arguments
        """
        super().__init__(message, **kwargs)

        if field:
            self.details["field"] = field

        if value is not None:
            self.details["value"] = self._sanitize_value(value)

    @staticmethod
    def _sanitize_value(value: Any) -> str:
        str_value = str(value)

        if len(str_value) > 100:
            str_value = str_value[:100] + "..."

        return str_value


class MissingFieldError(ValidationException):
    """
    Missing Field Error

    Raised when a required field is missing or empty.
    """

    default_error_code = 3004

    def __init__(
        self,
        message: str = "Required field is missing",
        field: str = "unknown",
        **kwargs: Any
    ) -> None:
        super().__init__(message, field=field, **kwargs)


class InvalidFormatError(ValidationException):
    """
    Invalid Format Error

    Raised when data doesn't match the expected format.
    """

    default_error_code = 3006

    def __init__(
        self,
        message: str = "Invalid format",
        field: Optional[str] = None,
        expected_format: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field=field, **kwargs)

        if expected_format:
            self.details["expected_format"] = expected_format

"""
============================================================================
LIVENESS SWEEP - VALIDATORS UTILITY
============================================================================
Boundary validation for payloads posted by devices. Anything that fails
here is rejected with a 400 and never reaches the registry or evaluator.
============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from exceptions import InvalidFormatError, MissingFieldError
from utils.helpers import TimeHelper


# ============================================================================
# PARSED PAYLOADS
# ============================================================================

@dataclass(frozen=True)
class DeviceReport:
    """A validated device report (probe response or heartbeat)."""
    family_id: str
    device_id: str
    client_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class StatusCheckRequest:
    """A validated channel status check request."""
    channel: str
    device_id: str


# ============================================================================
# DATA VALIDATORS
# ============================================================================

class DataValidator:
    """
    General data validation utilities.
    """

    @staticmethod
    def require_identifier(payload: Dict[str, Any], *keys: str) -> str:
        """
        Return the first non-empty string found under any of *keys*.

        Raises:
            MissingFieldError: none of the keys holds a value
            InvalidFormatError: the value is not a string
        """
        for key in keys:
            value = payload.get(key)
            if value is None or value == "":
                continue
            if not isinstance(value, str):
                raise InvalidFormatError(
                    f"{key} must be a string",
                    field=key,
                    expected_format="non-empty string",
                )
            value = value.strip()
            if value:
                return value

        raise MissingFieldError(f"{keys[0]} is required", field=keys[0])

    @staticmethod
    def parse_timestamp(value: Any, field: str) -> Optional[datetime]:
        """
        Parse an optional client timestamp (ISO-8601 string or epoch millis).
        """
        if value is None or value == "":
            return None

        if isinstance(value, bool):
            raise InvalidFormatError(
                f"{field} must be a timestamp",
                field=field,
                expected_format="ISO-8601 or epoch milliseconds",
            )

        if isinstance(value, (int, float)):
            try:
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
            except (OverflowError, OSError, ValueError) as e:
                raise InvalidFormatError(
                    f"{field} is out of range",
                    field=field,
                    expected_format="ISO-8601 or epoch milliseconds",
                    cause=e,
                ) from e

        if isinstance(value, str):
            try:
                return TimeHelper.to_naive_utc(
                    datetime.fromisoformat(value.replace("Z", "+00:00"))
                )
            except ValueError:
                pass

        raise InvalidFormatError(
            f"{field} must be a timestamp",
            field=field,
            expected_format="ISO-8601 or epoch milliseconds",
        )


class ReportValidator:
    """
    Validates payloads posted by devices.
    """

    @staticmethod
    def validate_device_report(payload: Any) -> DeviceReport:
        """
        Validate ``{familyId, deviceId, respondedAt?}``.

        ``childId`` is accepted as a legacy alias of ``deviceId``.
        """
        if not isinstance(payload, dict):
            raise InvalidFormatError(
                "Request body must be a JSON object",
                expected_format="JSON object",
            )

        family_id = DataValidator.require_identifier(payload, "familyId")
        device_id = DataValidator.require_identifier(payload, "deviceId", "childId")
        client_timestamp = DataValidator.parse_timestamp(
            payload.get("respondedAt", payload.get("timestamp")), "respondedAt"
        )

        return DeviceReport(
            family_id=family_id,
            device_id=device_id,
            client_timestamp=client_timestamp,
        )

    @staticmethod
    def validate_status_check(payload: Any) -> StatusCheckRequest:
        """Validate ``{token, deviceId}`` for a channel status check."""
        if not isinstance(payload, dict):
            raise InvalidFormatError(
                "Request body must be a JSON object",
                expected_format="JSON object",
            )

        channel = DataValidator.require_identifier(payload, "token", "channel")
        device_id = DataValidator.require_identifier(payload, "deviceId", "childId")
        return StatusCheckRequest(channel=channel, device_id=device_id)

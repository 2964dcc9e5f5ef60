"""
============================================================================
LIVENESS SWEEP - ALERT FAN-OUT
============================================================================
Delivers a policy alert to every guardian of a family when one of its
devices is escalated to BLOCKED.

Guardian channels live in three fields (the current ``parent_tokens``
list plus two legacy fields) that may repeat entries. They are merged,
emptied entries dropped and duplicates removed in first-seen order, so
each guardian channel receives at most one alert per escalation.

Deliveries run concurrently; one failing channel never prevents the
others from being notified.
============================================================================
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.constants import DeliveryFailureKind
from database.models import DeviceRecord, FamilyRecord
from exceptions import DeliveryException
from monitoring.transport import PushTransport, build_alert_message
from utils.helpers import ChannelHelper
from utils.logger import get_logger


logger = get_logger("AlertFanout")


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class ChannelError:
    """A guardian channel the alert could not be delivered to."""
    channel: str
    kind: DeliveryFailureKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": ChannelHelper.mask(self.channel),
            "kind": self.kind.value,
            "message": self.message,
        }


@dataclass
class FanoutResult:
    """Outcome of notifying one family about one device."""
    delivered: List[str] = field(default_factory=list)
    failed: List[ChannelError] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delivered": len(self.delivered),
            "failed": [error.to_dict() for error in self.failed],
        }


# ============================================================================
# ALERT FAN-OUT
# ============================================================================

class AlertFanout:
    """
    Parameters
    ----------
    transport : PushTransport
        Delivery mechanism shared with the dispatcher.
    operation_timeout : float | None
        Upper bound in seconds for a single delivery.
    """

    def __init__(self, transport: PushTransport, operation_timeout: Optional[float] = None):
        self.transport = transport
        self.operation_timeout = operation_timeout

    async def notify_guardians(self, family: FamilyRecord, device: DeviceRecord) -> FanoutResult:
        """
        Send a policy alert about *device* to every guardian of *family*.
        """
        channels = family.guardian_channels()
        result = FanoutResult()

        if not channels:
            logger.warning(
                f"[AlertFanout] Family {family.id} has no guardian channels; "
                f"alert for {device.key} not delivered"
            )
            return result

        outcomes = await asyncio.gather(
            *(self._deliver(channel, device) for channel in channels),
            return_exceptions=True,
        )

        for channel, outcome in zip(channels, outcomes):
            if outcome is None:
                result.delivered.append(channel)
            elif isinstance(outcome, ChannelError):
                result.failed.append(outcome)
            else:
                logger.error(
                    f"[AlertFanout] Unexpected error alerting "
                    f"{ChannelHelper.mask(channel)}: {outcome!r}"
                )
                result.failed.append(
                    ChannelError(channel, DeliveryFailureKind.TRANSIENT, str(outcome))
                )

        logger.info(
            f"[AlertFanout] Alert for {device.key} delivered to "
            f"{len(result.delivered)}/{len(channels)} guardian channels"
        )
        return result

    async def _deliver(self, channel: str, device: DeviceRecord) -> Optional[ChannelError]:
        try:
            await asyncio.wait_for(
                self.transport.send(build_alert_message(channel, device)),
                timeout=self.operation_timeout,
            )
        except DeliveryException as e:
            logger.warning(
                f"[AlertFanout] Delivery to {ChannelHelper.mask(channel)} failed: {e.message}"
            )
            return ChannelError(channel, e.kind, e.message)
        except asyncio.TimeoutError:
            logger.warning(f"[AlertFanout] Delivery to {ChannelHelper.mask(channel)} timed out")
            return ChannelError(channel, DeliveryFailureKind.TIMEOUT, "delivery timed out")
        return None

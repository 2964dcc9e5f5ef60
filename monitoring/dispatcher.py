"""
============================================================================
LIVENESS SWEEP - PROBE DISPATCHER
============================================================================
Sends one probe to every eligible device and records the acknowledged
sends in the registry.

Ordering per device
-------------------
1.  stamp ``sent_at`` with the server clock
2.  send the probe through the transport
3.  on acknowledgement write ``last_probe_sent_at`` / ``last_probe_id``

Stamping before the send means a response that races back before step 3
still carries a later timestamp than the probe it answers. A failed send
never advances ``last_probe_sent_at``.
============================================================================
"""

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from config.settings import SweepSettings
from database.manager import DeviceRepository
from database.models import DeviceKey, DeviceRecord
from exceptions import DatabaseException, DeliveryException, TokenInvalidError
from monitoring.transport import PushTransport, build_probe_message
from utils.helpers import ChannelHelper, TimeHelper
from utils.logger import get_logger


logger = get_logger("Dispatcher")


# ============================================================================
# RESULT
# ============================================================================

@dataclass
class DispatchSummary:
    """Outcome of one dispatch pass."""
    sent: List[DeviceKey] = field(default_factory=list)
    skipped: List[DeviceKey] = field(default_factory=list)
    invalidated: List[DeviceKey] = field(default_factory=list)
    failed: List[DeviceKey] = field(default_factory=list)
    write_failures: List[DeviceKey] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return len(self.sent)

    def to_dict(self) -> dict:
        return {
            "sent": len(self.sent),
            "skipped": len(self.skipped),
            "invalidated": len(self.invalidated),
            "failed": len(self.failed),
            "write_failures": len(self.write_failures),
        }


# ============================================================================
# PROBE DISPATCHER
# ============================================================================

class ProbeDispatcher:
    """
    Parameters
    ----------
    repository : DeviceRepository
        Registry the acknowledged sends are written to.
    transport : PushTransport
        Delivery mechanism; applies its own send pacing.
    settings : SweepSettings
        Concurrency bound and per-operation timeout.
    """

    def __init__(
        self,
        repository: DeviceRepository,
        transport: PushTransport,
        settings: SweepSettings,
    ):
        self.repository = repository
        self.transport = transport
        self.operation_timeout = settings.operation_timeout
        self._max_concurrency = settings.max_concurrency

    @staticmethod
    def is_eligible(device: DeviceRecord) -> bool:
        return device.has_usable_channel and not device.is_blocked

    async def dispatch_probes(self, devices: Iterable[DeviceRecord]) -> DispatchSummary:
        """
        Probe every eligible device concurrently.

        Per-device failures are classified into the summary and never
        abort the pass.
        """
        summary = DispatchSummary()
        eligible: List[DeviceRecord] = []

        for device in devices:
            if self.is_eligible(device):
                eligible.append(device)
            else:
                summary.skipped.append(device.key)

        if not eligible:
            logger.info(f"[Dispatcher] No eligible devices ({len(summary.skipped)} skipped)")
            return summary

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def guarded(device: DeviceRecord) -> None:
            async with semaphore:
                await self._probe_device(device, summary)

        results = await asyncio.gather(
            *(guarded(device) for device in eligible),
            return_exceptions=True,
        )

        for device, result in zip(eligible, results):
            if isinstance(result, Exception):
                logger.error(f"[Dispatcher] Probe for {device.key} raised: {result!r}")
                summary.failed.append(device.key)

        logger.info(
            f"[Dispatcher] Probes sent={len(summary.sent)} skipped={len(summary.skipped)} "
            f"invalidated={len(summary.invalidated)} failed={len(summary.failed)}"
        )
        return summary

    async def _probe_device(self, device: DeviceRecord, summary: DispatchSummary) -> None:
        key = device.key
        channel = device.notification_channel
        sent_at = TimeHelper.get_utc_now()
        probe_id = f"{TimeHelper.to_epoch_millis(sent_at)}_{device.id}"

        try:
            await asyncio.wait_for(
                self.transport.send(build_probe_message(channel, probe_id, sent_at)),
                timeout=self.operation_timeout,
            )
        except TokenInvalidError as e:
            logger.warning(
                f"[Dispatcher] Channel {ChannelHelper.mask(channel)} of {key} is invalid: "
                f"{e.message}"
            )
            await self._invalidate(key, summary)
            return
        except asyncio.TimeoutError:
            logger.warning(f"[Dispatcher] Probe to {key} timed out after {self.operation_timeout}s")
            summary.failed.append(key)
            return
        except DeliveryException as e:
            logger.warning(f"[Dispatcher] Probe to {key} failed: {e.log_format()}")
            summary.failed.append(key)
            return

        try:
            await asyncio.wait_for(
                self.repository.record_probe_sent(key, sent_at, probe_id),
                timeout=self.operation_timeout,
            )
        except (DatabaseException, asyncio.TimeoutError) as e:
            logger.error(f"[Dispatcher] Probe to {key} delivered but not recorded: {e!r}")
            summary.write_failures.append(key)
            return

        summary.sent.append(key)
        logger.debug(f"[Dispatcher] Probe {probe_id} sent to {key}")

    async def _invalidate(self, key: DeviceKey, summary: DispatchSummary) -> None:
        try:
            await asyncio.wait_for(
                self.repository.invalidate_channel(key, TimeHelper.get_utc_now()),
                timeout=self.operation_timeout,
            )
        except (DatabaseException, asyncio.TimeoutError) as e:
            logger.error(f"[Dispatcher] Could not flag channel of {key} invalid: {e!r}")
            summary.write_failures.append(key)
            return
        summary.invalidated.append(key)

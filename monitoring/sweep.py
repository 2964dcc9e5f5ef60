"""
============================================================================
LIVENESS SWEEP - SWEEP COORDINATOR
============================================================================
Runs one liveness cycle:

1.  read the registry snapshot
2.  evaluate the previous round of probes and persist state changes
3.  alert guardians of every newly BLOCKED device
4.  re-read the snapshot and dispatch the next round of probes

Phases run one after another; inside a phase per-device work is
concurrent. Only a snapshot read failure aborts the cycle.
============================================================================
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from database.manager import DeviceRepository
from database.models import DeviceKey
from exceptions import SnapshotUnavailableError
from monitoring.alerts import AlertFanout, FanoutResult
from monitoring.dispatcher import DispatchSummary, ProbeDispatcher
from monitoring.evaluator import Escalation, EvaluationReport, LivenessEvaluator
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Sweep")


@dataclass
class SweepReport:
    """Everything that happened during one cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluation: Optional[EvaluationReport] = None
    alerts: Dict[DeviceKey, FanoutResult] = field(default_factory=dict)
    dispatch: Optional[DispatchSummary] = None

    @property
    def blocked(self) -> List[DeviceKey]:
        if self.evaluation is None:
            return []
        return [e.device.key for e in self.evaluation.confirmed_escalations]

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "probesSent": self.dispatch.sent_count if self.dispatch else 0,
            "tricksterCount": len(self.blocked),
            "startedAt": TimeHelper.isoformat(self.started_at),
            "durationSeconds": round(self.duration, 3),
            "evaluation": self.evaluation.to_dict() if self.evaluation else {},
            "alerts": {str(key): result.to_dict() for key, result in self.alerts.items()},
            "dispatch": self.dispatch.to_dict() if self.dispatch else {},
        }


class SweepCoordinator:
    """
    Wires the evaluator, fan-out and dispatcher into a single cycle.

    Cycles are serialized: a manual trigger arriving while a scheduled
    cycle runs waits for it to finish.
    """

    def __init__(
        self,
        repository: DeviceRepository,
        evaluator: LivenessEvaluator,
        fanout: AlertFanout,
        dispatcher: ProbeDispatcher,
    ):
        self.repository = repository
        self.evaluator = evaluator
        self.fanout = fanout
        self.dispatcher = dispatcher

        self._lock = asyncio.Lock()
        self.cycles_completed = 0
        self.last_report: Optional[SweepReport] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Execute one full cycle.

        Raises:
            SnapshotUnavailableError: the registry could not be read
        """
        async with self._lock:
            report = SweepReport(started_at=TimeHelper.get_utc_now())
            logger.info("[Sweep] Cycle started")

            try:
                snapshot = await self.repository.fetch_snapshot()
                report.evaluation = await self.evaluator.run(snapshot, now=now)

                report.alerts = await self._fan_out(report.evaluation.confirmed_escalations)

                fresh = await self.repository.fetch_snapshot()
                report.dispatch = await self.dispatcher.dispatch_probes(fresh.devices)
            except SnapshotUnavailableError as e:
                logger.error(f"[Sweep] Cycle aborted: {e.log_format()}")
                raise

            report.finished_at = TimeHelper.get_utc_now()
            self.cycles_completed += 1
            self.last_report = report

            logger.info(
                f"[Sweep] Cycle finished in {report.duration:.2f}s: "
                f"probes_sent={report.dispatch.sent_count}, blocked={len(report.blocked)}"
            )
            return report

    async def _fan_out(self, escalations: List[Escalation]) -> Dict[DeviceKey, FanoutResult]:
        targets = [e for e in escalations if e.family is not None]
        if not targets:
            return {}

        results = await asyncio.gather(
            *(self.fanout.notify_guardians(e.family, e.device) for e in targets),
            return_exceptions=True,
        )

        alerts: Dict[DeviceKey, FanoutResult] = {}
        for escalation, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.error(
                    f"[Sweep] Fan-out for {escalation.device.key} raised: {result!r}"
                )
                continue
            alerts[escalation.device.key] = result
        return alerts

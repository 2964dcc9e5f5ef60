"""
============================================================================
LIVENESS SWEEP - LIVENESS EVALUATOR
============================================================================
Classifies each probed device from two independent signals:

    probe response   did the device answer the latest probe in time?
    app heartbeat    is the monitoring app itself still running?

A device that keeps its app running while ignoring probes has had its
protection disabled on purpose and is escalated to BLOCKED. A device that
ignores probes and has also stopped sending heartbeats is simply OFFLINE.

State machine
-------------
    UNKNOWN / OFFLINE / SUSPECTED  --valid fresh response-->  RESPONDING
    any non-blocked state  --no response, app running-->  SUSPECTED -> BLOCKED
    any non-blocked state  --no response, app stopped-->  OFFLINE
    BLOCKED  --(nothing; cleared out of band)

The answer window is measured from the oldest unanswered probe. The
sweep re-probes every cycle, so the latest probe is always young.

``evaluate()`` is a pure function over an immutable snapshot. The
LivenessEvaluator applies its transitions to the registry.
============================================================================
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from config.constants import LivenessState
from config.settings import SweepSettings
from database.manager import DeviceRepository
from database.models import DeviceKey, DeviceRecord, FamilyRecord, RegistrySnapshot
from exceptions import DatabaseException
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Evaluator")


# ============================================================================
# POLICY
# ============================================================================

@dataclass(frozen=True)
class LivenessPolicy:
    """Timing thresholds used to classify a device."""
    response_timeout: timedelta = timedelta(minutes=10)
    heartbeat_freshness_window: timedelta = timedelta(minutes=3)

    @classmethod
    def from_settings(cls, settings: SweepSettings) -> "LivenessPolicy":
        return cls(
            response_timeout=settings.response_timeout_delta,
            heartbeat_freshness_window=settings.heartbeat_freshness_delta,
        )


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class Transition:
    """A state change computed for one device."""
    key: DeviceKey
    previous: LivenessState
    current: LivenessState
    via: Optional[LivenessState] = None
    blocked_at: Optional[datetime] = None

    @property
    def is_escalation(self) -> bool:
        return self.current is LivenessState.BLOCKED


@dataclass(frozen=True)
class Escalation:
    """A device escalated to BLOCKED together with the family to alert."""
    device: DeviceRecord
    family: Optional[FamilyRecord]
    transition: Transition


@dataclass
class Evaluation:
    """
    Output of a single evaluation pass.

    ``classifications`` holds the resulting state of every evaluated
    device; ``transitions`` only those whose state changed.
    """
    classifications: Dict[DeviceKey, LivenessState] = field(default_factory=dict)
    transitions: List[Transition] = field(default_factory=list)
    escalations: List[Escalation] = field(default_factory=list)
    awaiting: List[DeviceKey] = field(default_factory=list)
    excluded: List[DeviceKey] = field(default_factory=list)

    def count(self, state: LivenessState) -> int:
        return sum(1 for value in self.classifications.values() if value is state)


# ============================================================================
# PURE CLASSIFICATION
# ============================================================================

def is_evaluable(device: DeviceRecord) -> bool:
    """A device is judged only once it has a usable channel and a probe out."""
    return (
        device.has_usable_channel
        and device.last_probe_sent_at is not None
        and not device.is_blocked
    )


def has_valid_response(device: DeviceRecord) -> bool:
    responded_at = device.last_probe_responded_at
    return responded_at is not None and responded_at > device.last_probe_sent_at


def is_app_running(device: DeviceRecord, now: datetime, policy: LivenessPolicy) -> bool:
    heartbeat = device.last_heartbeat_at
    return heartbeat is not None and now - heartbeat < policy.heartbeat_freshness_window


def evaluate(
    devices: Iterable[DeviceRecord],
    families: Mapping[str, FamilyRecord],
    now: datetime,
    policy: LivenessPolicy,
) -> Evaluation:
    """
    Classify every evaluable device.

    Args:
        devices: Devices from one snapshot
        families: Families of that snapshot keyed by id
        now: Evaluation time (naive UTC)
        policy: Timing thresholds

    Returns:
        Evaluation with per-device classifications, the state changes to
        persist and the escalations that need a guardian alert
    """
    evaluation = Evaluation()

    for device in devices:
        key = device.key
        if not is_evaluable(device):
            evaluation.excluded.append(key)
            continue

        previous = device.liveness_state
        valid = has_valid_response(device)

        if valid and now - device.last_probe_responded_at <= policy.response_timeout:
            current = LivenessState.RESPONDING
        elif not valid and now - device.outstanding_since <= policy.response_timeout:
            # Oldest unanswered probe still inside its answer window
            evaluation.awaiting.append(key)
            evaluation.classifications[key] = previous
            continue
        elif is_app_running(device, now, policy):
            current = LivenessState.BLOCKED
        else:
            current = LivenessState.OFFLINE

        evaluation.classifications[key] = current
        if current is previous:
            continue

        if current is LivenessState.BLOCKED:
            transition = Transition(
                key=key,
                previous=previous,
                current=current,
                via=LivenessState.SUSPECTED,
                blocked_at=now,
            )
            family = families.get(device.family_id)
            if family is None:
                logger.warning(f"[Evaluator] Family of {key} missing from snapshot")
            evaluation.escalations.append(Escalation(device, family, transition))
        else:
            transition = Transition(key=key, previous=previous, current=current)

        evaluation.transitions.append(transition)

    return evaluation


# ============================================================================
# EVALUATOR SERVICE
# ============================================================================

@dataclass
class EvaluationReport:
    """An evaluation together with the outcome of persisting it."""
    evaluation: Evaluation
    applied: List[Transition] = field(default_factory=list)
    confirmed_escalations: List[Escalation] = field(default_factory=list)
    superseded: List[DeviceKey] = field(default_factory=list)
    write_failures: List[DeviceKey] = field(default_factory=list)

    def to_dict(self) -> dict:
        evaluation = self.evaluation
        return {
            "evaluated": len(evaluation.classifications),
            "excluded": len(evaluation.excluded),
            "awaiting": len(evaluation.awaiting),
            "responding": evaluation.count(LivenessState.RESPONDING),
            "offline": evaluation.count(LivenessState.OFFLINE),
            "blocked": len(self.confirmed_escalations),
            "write_failures": len(self.write_failures),
        }


class LivenessEvaluator:
    """
    Runs ``evaluate()`` on a snapshot and persists the resulting state
    changes. Escalations are confirmed only when the conditional BLOCKED
    write actually changed the row.
    """

    def __init__(
        self,
        repository: DeviceRepository,
        policy: LivenessPolicy,
        settings: SweepSettings,
    ):
        self.repository = repository
        self.policy = policy
        self.operation_timeout = settings.operation_timeout
        self._max_concurrency = settings.max_concurrency

    async def run(self, snapshot: RegistrySnapshot, now: Optional[datetime] = None) -> EvaluationReport:
        now = now or TimeHelper.get_utc_now()
        evaluation = evaluate(snapshot.devices, snapshot.families, now, self.policy)
        report = EvaluationReport(evaluation=evaluation)

        escalations = {escalation.device.key: escalation for escalation in evaluation.escalations}
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def guarded(transition: Transition) -> bool:
            async with semaphore:
                return await asyncio.wait_for(
                    self.repository.update_liveness(
                        transition.key, transition.current, transition.blocked_at
                    ),
                    timeout=self.operation_timeout,
                )

        results = await asyncio.gather(
            *(guarded(transition) for transition in evaluation.transitions),
            return_exceptions=True,
        )

        for transition, result in zip(evaluation.transitions, results):
            if isinstance(result, (DatabaseException, asyncio.TimeoutError)):
                logger.error(f"[Evaluator] Failed to persist {transition.key}: {result!r}")
                report.write_failures.append(transition.key)
            elif isinstance(result, Exception):
                logger.error(f"[Evaluator] Unexpected error persisting {transition.key}: {result!r}")
                report.write_failures.append(transition.key)
            elif not result:
                # Row already BLOCKED by a concurrent sweep
                logger.debug(f"[Evaluator] {transition.key} already blocked, skipped")
                report.superseded.append(transition.key)
            else:
                report.applied.append(transition)
                if transition.is_escalation:
                    logger.warning(
                        f"[Evaluator] {transition.key} escalated "
                        f"{transition.previous.value} -> blocked (app running, probe unanswered)"
                    )
                    report.confirmed_escalations.append(escalations[transition.key])
                else:
                    logger.info(
                        f"[Evaluator] {transition.key} "
                        f"{transition.previous.value} -> {transition.current.value}"
                    )

        logger.info(f"[Evaluator] Pass complete: {report.to_dict()}")
        return report

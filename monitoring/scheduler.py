"""
============================================================================
LIVENESS SWEEP - BACKGROUND TASK SCHEDULER
============================================================================
A lightweight, asyncio-native task scheduler that runs periodic background
jobs in the service's event loop. No broker, no worker processes: every
job is a coroutine.

Registered Jobs
---------------
1.  liveness_sweep      (every sweep.interval seconds, default 5 min)
    Evaluates the previous probes, alerts guardians of newly blocked
    devices and dispatches the next round of probes.

2.  health_heartbeat    (every 10 min)
    Writes a heartbeat entry to the log so operators can verify the
    service is alive during quiet periods.

A job that is still running when its next slot arrives is skipped for
that slot rather than started twice.
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from config.settings import SweepSettings
from database.manager import DatabaseManager
from monitoring.sweep import SweepCoordinator
from utils.helpers import PerformanceHelper
from utils.logger import get_logger


logger = get_logger("Scheduler")


# ============================================================================
# JOB DEFINITION
# ============================================================================

@dataclass
class ScheduledJob:
    """
    Describes a single periodic background job.

    Attributes
    ----------
    name : str
        Human-readable identifier (used in logs).
    interval_seconds : int
        How often the job runs.
    coroutine_factory : Callable
        An async callable (no arguments) that performs the work.
    enabled : bool
        Can be toggled at runtime.
    last_run : Optional[float]
        Epoch timestamp of the last successful execution.
    next_run : float
        Epoch timestamp when the job should next execute.
    run_count : int
        Total number of successful executions since startup.
    error_count : int
        Total number of failed executions since startup.
    running : bool
        True while an execution is in progress.
    """
    name: str
    interval_seconds: int
    coroutine_factory: Callable
    enabled: bool = True
    last_run: Optional[float] = None
    next_run: float = field(default_factory=time.time)
    run_count: int = 0
    error_count: int = 0
    running: bool = False


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
    """
    Asyncio-based periodic job scheduler.

    Usage
    -----
        scheduler = Scheduler(db_manager, coordinator, settings.sweep)
        await scheduler.start()
        # ... later ...
        await scheduler.stop()
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        coordinator: Optional[SweepCoordinator] = None,
        sweep_settings: Optional[SweepSettings] = None,
        tick_interval: float = 2.0,
    ):
        self.db_manager = db_manager
        self.coordinator = coordinator
        self.sweep_settings = sweep_settings or SweepSettings()

        self._jobs: Dict[str, ScheduledJob] = {}
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._job_tasks: Set[asyncio.Task] = set()
        self._tick_interval = tick_interval

        self._register_builtin_jobs()

        logger.info(f"Scheduler created with {len(self._jobs)} built-in jobs")

    # ------------------------------------------------------------------
    # JOB REGISTRATION
    # ------------------------------------------------------------------

    def register_job(
        self,
        name: str,
        interval_seconds: int,
        coroutine_factory: Callable,
        enabled: bool = True,
    ) -> None:
        """
        Register a new periodic job.

        Parameters
        ----------
        name : str
            Unique job name.
        interval_seconds : int
            Period in seconds.
        coroutine_factory : Callable
            An async callable that takes no arguments.
        enabled : bool
            Whether the job starts enabled.
        """
        if name in self._jobs:
            logger.warning(f"[Scheduler] Job '{name}' already registered, overwriting")

        self._jobs[name] = ScheduledJob(
            name=name,
            interval_seconds=interval_seconds,
            coroutine_factory=coroutine_factory,
            enabled=enabled,
            next_run=time.time(),  # run on first tick
        )
        logger.debug(f"[Scheduler] Registered job '{name}' (interval={interval_seconds}s)")

    def disable_job(self, name: str) -> bool:
        """Disable a job by name. Returns True if found."""
        if name in self._jobs:
            self._jobs[name].enabled = False
            return True
        return False

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Scheduler is already running")
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._main_loop())
        logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler loop and cancel jobs still in flight."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        for task in list(self._job_tasks):
            task.cancel()
        if self._job_tasks:
            await asyncio.gather(*self._job_tasks, return_exceptions=True)
        logger.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # MAIN LOOP
    # ------------------------------------------------------------------

    def run_due_jobs(self, now: Optional[float] = None) -> List[str]:
        """
        Launch every enabled, idle job whose next_run has arrived.

        Returns the names of the jobs launched.
        """
        now = now if now is not None else time.time()
        launched = []
        for job in self._jobs.values():
            if not job.enabled or now < job.next_run:
                continue
            # Advance next_run immediately so we don't re-trigger
            job.next_run = now + job.interval_seconds
            if job.running:
                logger.warning(f"[Scheduler] Job '{job.name}' still running, slot skipped")
                continue

            job.running = True
            task = asyncio.create_task(self._execute_job(job))
            self._job_tasks.add(task)
            task.add_done_callback(self._job_tasks.discard)
            launched.append(job.name)
        return launched

    async def _main_loop(self) -> None:
        """
        Wake up every _tick_interval seconds and launch due jobs.
        """
        logger.info("[Scheduler] Main loop started")
        while self._running:
            self.run_due_jobs()
            try:
                await asyncio.sleep(self._tick_interval)
            except asyncio.CancelledError:
                break

        logger.info("[Scheduler] Main loop exited")

    # ------------------------------------------------------------------
    # JOB EXECUTION
    # ------------------------------------------------------------------

    async def _execute_job(self, job: ScheduledJob) -> None:
        """
        Run a single job, capture timing and errors.
        """
        start_time = time.time()
        try:
            logger.debug(f"[Scheduler] Running job '{job.name}'")
            await job.coroutine_factory()
            elapsed = time.time() - start_time

            job.run_count += 1
            job.last_run = time.time()
            logger.debug(
                f"[Scheduler] Job '{job.name}' completed in {elapsed:.2f}s "
                f"(run #{job.run_count})"
            )

        except asyncio.CancelledError:
            logger.info(f"[Scheduler] Job '{job.name}' cancelled")
            raise
        except Exception as e:
            job.error_count += 1
            elapsed = time.time() - start_time
            logger.error(f"[Scheduler] Job '{job.name}' FAILED after {elapsed:.2f}s: {e}")
        finally:
            job.running = False

    # ------------------------------------------------------------------
    # DIAGNOSTICS
    # ------------------------------------------------------------------

    @staticmethod
    def _format_epoch(value: Optional[float]) -> Optional[str]:
        if not value:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()

    def get_job_stats(self) -> List[Dict[str, Any]]:
        """Return status of all registered jobs."""
        return [
            {
                "name": job.name,
                "interval_seconds": job.interval_seconds,
                "enabled": job.enabled,
                "running": job.running,
                "run_count": job.run_count,
                "error_count": job.error_count,
                "last_run": self._format_epoch(job.last_run),
                "next_run": self._format_epoch(job.next_run),
            }
            for job in self._jobs.values()
        ]

    # ==================================================================
    # BUILT-IN JOBS
    # ==================================================================

    def _register_builtin_jobs(self) -> None:
        """Register all built-in periodic jobs."""

        # 1. Liveness sweep
        self.register_job(
            "liveness_sweep",
            interval_seconds=self.sweep_settings.interval,
            coroutine_factory=self._job_liveness_sweep,
            enabled=self.coordinator is not None,
        )

        # 2. Health heartbeat (every 10 minutes)
        self.register_job(
            "health_heartbeat",
            interval_seconds=600,
            coroutine_factory=self._job_health_heartbeat,
        )

    # ------------------------------------------------------------------
    # JOB: Liveness Sweep
    # ------------------------------------------------------------------

    async def _job_liveness_sweep(self) -> None:
        """
        Run one sweep cycle. A snapshot failure propagates so the job's
        error counter reflects it; the next slot is the retry.
        """
        report = await self.coordinator.run_cycle()
        logger.debug(f"[LivenessSweep] {report.to_dict()}")

    # ------------------------------------------------------------------
    # JOB: Health Heartbeat
    # ------------------------------------------------------------------

    async def _job_health_heartbeat(self) -> None:
        """
        Write a simple heartbeat log entry for operator confidence.
        """
        is_alive = await self.db_manager.check_connection()
        cycles = self.coordinator.cycles_completed if self.coordinator else 0
        logger.info(
            f"[Heartbeat] Service alive: db={'OK' if is_alive else 'FAIL'}, "
            f"cycles={cycles}, memory={PerformanceHelper.get_memory_usage():.1f}MB"
        )


# ============================================================================
# END OF SCHEDULER MODULE
# ============================================================================

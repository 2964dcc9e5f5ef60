"""
============================================================================
LIVENESS SWEEP - MAIN APPLICATION
============================================================================
Integrates every layer of the service:

    Core & Database
        • Settings (pydantic-settings)
        • SQLAlchemy async engine + registry models
        • DatabaseManager + DeviceRepository
        • Logging (loguru), validators, helpers

    Sweep
        • HttpPushTransport  probes and alerts over httpx
        • LivenessEvaluator  two-signal classification
        • AlertFanout        guardian notification
        • ProbeDispatcher    next round of probes
        • SweepCoordinator   one cycle = evaluate, fan-out, dispatch

    Infrastructure
        • ReportServer       aiohttp endpoints for device reports
        • Scheduler          periodic sweep + heartbeat jobs

Startup Order
-------------
1.  Load settings & configure logging
2.  Initialize DatabaseManager (create tables if needed)
3.  Create the push transport
4.  Wire evaluator, fan-out, dispatcher and coordinator
5.  Start ReportServer
6.  Start Scheduler

Shutdown Order (reverse)
------------------------
On SIGINT or SIGTERM:
    stop scheduler → stop report server → close transport → close DB
============================================================================
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

# ---------------------------------------------------------------------------
# Path setup: ensure the project root is importable regardless of CWD
# ---------------------------------------------------------------------------
sys.path.insert(0, str(Path(__file__).parent))

from pydantic import ValidationError

from config.settings import Settings, get_settings
from database.manager import DatabaseManager, DeviceRepository
from exceptions import ConfigurationError, InitializationError, LivenessMonitorException
from monitoring.alerts import AlertFanout
from monitoring.dispatcher import ProbeDispatcher
from monitoring.evaluator import LivenessEvaluator, LivenessPolicy
from monitoring.report_server import ReportServer
from monitoring.scheduler import Scheduler
from monitoring.sweep import SweepCoordinator
from monitoring.transport import HttpPushTransport, PushTransport
from utils.logger import get_logger, setup_logging


logger = get_logger("Main")


# ============================================================================
# APPLICATION CLASS
# ============================================================================

class LivenessSweepApplication:
    """
    Top-level application orchestrator.

    Owns every subsystem and is the single place that knows the startup /
    shutdown order. Subsystems receive their collaborators explicitly;
    only Settings is cached globally.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        # --- subsystems (populated during startup) ---
        self.db_manager: Optional[DatabaseManager] = None
        self.repository: Optional[DeviceRepository] = None
        self.transport: Optional[PushTransport] = None
        self.coordinator: Optional[SweepCoordinator] = None
        self.report_server: Optional[ReportServer] = None
        self.scheduler: Optional[Scheduler] = None

        self._is_running = False
        self._shutdown_event = asyncio.Event()

    # ==================================================================
    # PHASE 1: DATABASE
    # ==================================================================

    async def _init_database(self) -> bool:
        """Initialize the database manager and verify connectivity."""
        logger.info("-- Phase 1: Database --")
        try:
            self.db_manager = DatabaseManager(self.settings.database)
            await self.db_manager.initialize()

            if not await self.db_manager.check_connection():
                logger.error("Database connection check failed")
                return False

            self.repository = DeviceRepository(self.db_manager)
            snapshot = await self.repository.fetch_snapshot()
            logger.info(
                f"Connected to {self.settings.database.type.value}: "
                f"families={len(snapshot.families)}, devices={len(snapshot)}"
            )
            return True

        except LivenessMonitorException as e:
            logger.error(f"Database init failed: {e.log_format()}")
            return False

    # ==================================================================
    # PHASE 2: TRANSPORT
    # ==================================================================

    async def _init_transport(self) -> bool:
        logger.info("-- Phase 2: Push Transport --")
        self.transport = HttpPushTransport(self.settings.push)
        if not self.settings.push.access_token.get_secret_value():
            logger.warning("PUSH_ACCESS_TOKEN is empty; sends will be rejected")
        logger.info(f"Push endpoint: {self.transport.send_url}")
        return True

    # ==================================================================
    # PHASE 3: SWEEP
    # ==================================================================

    async def _init_sweep(self) -> bool:
        """Wire evaluator, fan-out, dispatcher and coordinator."""
        logger.info("-- Phase 3: Liveness Sweep --")
        sweep = self.settings.sweep
        policy = LivenessPolicy.from_settings(sweep)

        self.coordinator = SweepCoordinator(
            repository=self.repository,
            evaluator=LivenessEvaluator(self.repository, policy, sweep),
            fanout=AlertFanout(self.transport, sweep.operation_timeout),
            dispatcher=ProbeDispatcher(self.repository, self.transport, sweep),
        )
        self.scheduler = Scheduler(
            db_manager=self.db_manager,
            coordinator=self.coordinator,
            sweep_settings=sweep,
        )

        logger.info(
            f"Sweep every {sweep.interval}s: response_timeout={sweep.response_timeout}s, "
            f"heartbeat_window={sweep.heartbeat_freshness_window}s, "
            f"max_concurrency={sweep.max_concurrency}"
        )
        return True

    # ==================================================================
    # FULL STARTUP SEQUENCE
    # ==================================================================

    async def startup(self) -> bool:
        """
        Execute the complete startup sequence.
        Returns False (and logs errors) if any critical phase fails.
        """
        logger.info("=" * 74)
        logger.info(f"  STARTING {self.settings.app_name} v{self.settings.app_version}")
        logger.info("=" * 74)

        if not await self._init_database():
            return False

        if not await self._init_transport():
            return False

        if not await self._init_sweep():
            return False

        logger.info("-- Starting background services --")

        if self.settings.server.enabled:
            self.report_server = ReportServer(
                settings=self.settings,
                db_manager=self.db_manager,
                repository=self.repository,
                transport=self.transport,
                coordinator=self.coordinator,
                scheduler=self.scheduler,
            )
            try:
                await self.report_server.start()
            except InitializationError as e:
                logger.error(f"Report server failed to start: {e.log_format()}")
                return False

        await self.scheduler.start()

        self._is_running = True
        logger.info("=" * 74)
        logger.info("  ALL SYSTEMS OPERATIONAL")
        logger.info("=" * 74)
        return True

    # ==================================================================
    # SHUTDOWN SEQUENCE
    # ==================================================================

    async def shutdown(self) -> None:
        """
        Graceful shutdown in reverse order. A failure in one subsystem
        does not prevent the others from cleaning up.
        """
        if not self._is_running and self.db_manager is None:
            return

        logger.info("=" * 74)
        logger.info("  SHUTTING DOWN")
        logger.info("=" * 74)

        self._is_running = False

        steps = [
            ("Scheduler", self.scheduler.stop if self.scheduler else None),
            ("ReportServer", self.report_server.stop if self.report_server else None),
            ("Transport", self.transport.close if self.transport else None),
            ("Database", self.db_manager.close if self.db_manager else None),
        ]
        for name, stop in steps:
            if stop is None:
                continue
            try:
                await stop()
            except Exception as e:
                logger.error(f"{name} stop error: {e}")

        self.db_manager = None
        logger.info("  SHUTDOWN COMPLETE")

    def request_shutdown(self) -> None:
        logger.info("Signal received, initiating graceful shutdown")
        self._shutdown_event.set()

    async def run(self) -> None:
        """Block until a shutdown is requested."""
        await self._shutdown_event.wait()


# ============================================================================
# SETTINGS
# ============================================================================

def load_settings() -> Settings:
    """Load settings, turning pydantic errors into a ConfigurationError."""
    try:
        return get_settings()
    except ValidationError as e:
        first = e.errors()[0]
        raise ConfigurationError(
            f"Invalid configuration: {first['msg']}",
            config_key=".".join(str(part) for part in first["loc"]) or None,
            cause=e,
        ) from e


# ============================================================================
# SIGNAL HANDLER SETUP
# ============================================================================

def _install_signal_handlers(app: LivenessSweepApplication) -> None:
    """
    Install SIGTERM / SIGINT handlers so that the service shuts down
    gracefully even when stopped by the OS.
    """
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, app.request_shutdown)
        except (NotImplementedError, OSError):
            # Not supported on Windows; KeyboardInterrupt still applies
            pass


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

async def main() -> int:
    """
    Async main: creates the app, starts it, and runs until shutdown.
    """
    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging()
        logger.error(e.log_format())
        return 2
    setup_logging(settings.logging)

    app = LivenessSweepApplication(settings)
    _install_signal_handlers(app)

    try:
        if not await app.startup():
            logger.error("Startup failed, exiting")
            return 1
        await app.run()
    finally:
        await app.shutdown()
    return 0


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

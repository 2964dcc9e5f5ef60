"""
============================================================================
LIVENESS SWEEP - REPORT SERVER
============================================================================
aiohttp server through which devices report in and operators trigger
work on demand.

    GET  /health         service health JSON
    POST /ping-response  device answered a probe  {familyId, deviceId}
    POST /heartbeat      device app is running     {familyId, deviceId}
    POST /sweep          run one sweep cycle now
    POST /status-check   is the app behind a channel still installed?

Reports only stamp the server receive time. They never change a device's
liveness state; classification is the evaluator's job. A client supplied
``respondedAt`` is accepted and ignored.
============================================================================
"""

import json
import time
from typing import Any, Dict, Optional

from aiohttp import web

from config.settings import Settings
from database.manager import DatabaseManager, DeviceRepository
from database.models import DeviceKey
from exceptions import (
    DatabaseException,
    DatabaseNotFoundError,
    InitializationError,
    InvalidFormatError,
    SnapshotUnavailableError,
    ValidationException,
)
from monitoring.scheduler import Scheduler
from monitoring.sweep import SweepCoordinator
from monitoring.transport import PushTransport
from utils.helpers import PerformanceHelper, TimeHelper
from utils.logger import get_logger
from utils.validators import DeviceReport, ReportValidator


logger = get_logger("ReportServer")


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


def _error(status: int, message: str, **extra: Any) -> web.Response:
    return web.json_response({"success": False, "error": message, **extra}, status=status)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=200)
    else:
        response = await handler(request)
    response.headers.update(CORS_HEADERS)
    return response


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Translate domain exceptions into JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationException as e:
        logger.info(f"[ReportServer] Rejected {request.path}: {e.message}")
        return _error(400, e.message, field=e.details.get("field"))
    except DatabaseNotFoundError as e:
        return _error(404, e.message)
    except SnapshotUnavailableError as e:
        logger.error(f"[ReportServer] {request.path} failed: {e.log_format()}")
        return _error(503, "Registry unavailable")
    except DatabaseException as e:
        logger.error(f"[ReportServer] {request.path} failed: {e.log_format()}")
        return _error(503, "Registry write failed")


class ReportServer:
    """
    Inbound HTTP surface of the service.

    Attributes
    ----------
    app : aiohttp.web.Application
    _runner : aiohttp.web.AppRunner
    _site : aiohttp.web.TCPSite
    _start_time : float          epoch seconds when the server started
    _request_count : int         total requests served
    """

    def __init__(
        self,
        settings: Settings,
        db_manager: DatabaseManager,
        repository: DeviceRepository,
        transport: PushTransport,
        coordinator: Optional[SweepCoordinator] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.settings = settings
        self.db_manager = db_manager
        self.repository = repository
        self.transport = transport
        self.coordinator = coordinator
        self.scheduler = scheduler

        self._host = settings.server.host
        self._port = settings.server.port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._start_time: float = time.time()
        self._request_count: int = 0

        self.app = web.Application(middlewares=[cors_middleware, error_middleware])
        self.app.router.add_get("/", self._handle_root)
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_post("/ping-response", self._handle_ping_response)
        self.app.router.add_post("/heartbeat", self._handle_heartbeat)
        self.app.router.add_post("/sweep", self._handle_sweep)
        self.app.router.add_post("/status-check", self._handle_status_check)

    async def start(self) -> None:
        """Bind and start serving."""
        self._start_time = time.time()
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        try:
            await self._site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            raise InitializationError(
                f"Cannot bind {self._host}:{self._port}",
                component="ReportServer",
                cause=e,
            ) from e
        logger.info(f"ReportServer listening on {self._host}:{self._port}")

    async def stop(self) -> None:
        """Gracefully shut down the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("ReportServer stopped")

    # ------------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------------

    @staticmethod
    async def _read_json(request: web.Request) -> Any:
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidFormatError(
                "Request body must be valid JSON",
                expected_format="JSON object",
                cause=e,
            ) from e

    async def _read_report(self, request: web.Request) -> DeviceReport:
        self._request_count += 1
        return ReportValidator.validate_device_report(await self._read_json(request))

    # ------------------------------------------------------------------
    # ROUTE HANDLERS
    # ------------------------------------------------------------------

    async def _handle_root(self, request: web.Request) -> web.Response:
        """GET / - simple liveness probe."""
        self._request_count += 1
        return web.Response(text="OK", status=200)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health - detailed health JSON."""
        self._request_count += 1
        uptime_seconds = time.time() - self._start_time
        db_ok = await self.db_manager.check_connection()

        health: Dict[str, Any] = {
            "status": "healthy" if db_ok else "degraded",
            "database": "ok" if db_ok else "unreachable",
            "uptime_seconds": round(uptime_seconds, 1),
            "uptime_human": TimeHelper.seconds_to_human_readable(int(uptime_seconds)),
            "requests_served": self._request_count,
            "memory_mb": round(PerformanceHelper.get_memory_usage(), 1),
            "timestamp": TimeHelper.isoformat(TimeHelper.get_utc_now()),
            "app_name": self.settings.app_name,
            "app_version": self.settings.app_version,
        }

        if self.coordinator is not None:
            last = self.coordinator.last_report
            health["sweep"] = {
                "cycles_completed": self.coordinator.cycles_completed,
                "running": self.coordinator.is_running,
                "last_finished_at": TimeHelper.isoformat(last.finished_at) if last else None,
            }

        if self.scheduler is not None:
            health["jobs"] = self.scheduler.get_job_stats()

        return web.json_response(health, status=200 if db_ok else 503)

    async def _handle_ping_response(self, request: web.Request) -> web.Response:
        """POST /ping-response - record a probe answer."""
        report = await self._read_report(request)
        received_at = TimeHelper.get_utc_now()

        await self.repository.record_probe_response(
            DeviceKey(report.family_id, report.device_id), received_at
        )
        logger.info(f"[ReportServer] Probe response from {report.family_id}/{report.device_id}")

        return web.json_response({
            "success": True,
            "message": "Ping response recorded",
            "timestamp": TimeHelper.isoformat(received_at),
        })

    async def _handle_heartbeat(self, request: web.Request) -> web.Response:
        """POST /heartbeat - record that the device app is running."""
        report = await self._read_report(request)
        received_at = TimeHelper.get_utc_now()

        await self.repository.record_heartbeat(
            DeviceKey(report.family_id, report.device_id), received_at
        )
        logger.debug(f"[ReportServer] Heartbeat from {report.family_id}/{report.device_id}")

        return web.json_response({
            "success": True,
            "message": "Heartbeat recorded",
            "timestamp": TimeHelper.isoformat(received_at),
        })

    async def _handle_sweep(self, request: web.Request) -> web.Response:
        """POST /sweep - run one cycle on demand."""
        self._request_count += 1
        if self.coordinator is None:
            return _error(503, "Sweep not configured")

        report = await self.coordinator.run_cycle()
        return web.json_response(report.to_dict())

    async def _handle_status_check(self, request: web.Request) -> web.Response:
        """POST /status-check - probe a channel without touching the registry."""
        self._request_count += 1
        check = ReportValidator.validate_status_check(await self._read_json(request))

        status = await self.transport.check_channel(check.channel)
        logger.info(f"[ReportServer] Status check for device {check.device_id}: {status.value}")

        return web.json_response({
            "success": True,
            "status": status.value,
            "deviceId": check.device_id,
            "timestamp": TimeHelper.isoformat(TimeHelper.get_utc_now()),
        })

"""
============================================================================
LIVENESS SWEEP - MONITORING PACKAGE
============================================================================
Runtime components of the liveness sweep:
    • PushTransport      delivery of probes and alerts to channels
    • ProbeDispatcher    sends one probe to every eligible device
    • LivenessEvaluator  classifies devices and persists transitions
    • AlertFanout        notifies every guardian of a blocked device
    • SweepCoordinator   runs evaluate, fan-out and dispatch as a cycle
    • Scheduler          periodic background job runner
    • ReportServer       aiohttp endpoints for device reports

File layout
-----------
monitoring/
├── __init__.py        this file
├── transport.py       PushTransport, HttpPushTransport, message builders
├── dispatcher.py      ProbeDispatcher
├── evaluator.py       evaluate(), LivenessPolicy, LivenessEvaluator
├── alerts.py          AlertFanout
├── sweep.py           SweepCoordinator
├── scheduler.py       Scheduler + built-in periodic jobs
└── report_server.py   ReportServer
============================================================================
"""

from monitoring.transport import (
    PushTransport,
    HttpPushTransport,
    PushMessage,
    DeliveryResult,
    SendPacer,
    build_probe_message,
    build_alert_message,
    build_status_check_message,
)
from monitoring.dispatcher import ProbeDispatcher, DispatchSummary
from monitoring.evaluator import (
    LivenessPolicy,
    LivenessEvaluator,
    Evaluation,
    EvaluationReport,
    Escalation,
    Transition,
    evaluate,
)
from monitoring.alerts import AlertFanout, FanoutResult, ChannelError
from monitoring.sweep import SweepCoordinator, SweepReport
from monitoring.scheduler import Scheduler, ScheduledJob
from monitoring.report_server import ReportServer

__all__ = [
    # Transport
    "PushTransport",
    "HttpPushTransport",
    "PushMessage",
    "DeliveryResult",
    "SendPacer",
    "build_probe_message",
    "build_alert_message",
    "build_status_check_message",

    # Dispatcher
    "ProbeDispatcher",
    "DispatchSummary",

    # Evaluator
    "LivenessPolicy",
    "LivenessEvaluator",
    "Evaluation",
    "EvaluationReport",
    "Escalation",
    "Transition",
    "evaluate",

    # Fan-out
    "AlertFanout",
    "FanoutResult",
    "ChannelError",

    # Sweep
    "SweepCoordinator",
    "SweepReport",

    # Scheduler
    "Scheduler",
    "ScheduledJob",

    # HTTP surface
    "ReportServer",
]

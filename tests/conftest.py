"""Shared fixtures: a temporary SQLite registry and a recording transport."""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from config.settings import DatabaseSettings, SweepSettings
from database.manager import DatabaseManager, DeviceRepository
from monitoring.alerts import AlertFanout
from monitoring.dispatcher import ProbeDispatcher
from monitoring.evaluator import LivenessEvaluator, LivenessPolicy
from monitoring.sweep import SweepCoordinator
from monitoring.transport import DeliveryResult, PushMessage, PushTransport


T0 = datetime(2026, 3, 1, 12, 0, 0)


def at(seconds: float) -> datetime:
    """Timestamp *seconds* after T0."""
    return T0 + timedelta(seconds=seconds)


class FakeTransport(PushTransport):
    """
    Records every message. Channels listed in ``failures`` raise the
    mapped exception; channels in ``hang`` never complete.
    """

    def __init__(self):
        self.sent: List[PushMessage] = []
        self.failures: Dict[str, Exception] = {}
        self.hang: set = set()

    async def send(self, message: PushMessage) -> DeliveryResult:
        self.sent.append(message)
        if message.channel in self.hang:
            await asyncio.sleep(3600)
        error = self.failures.get(message.channel)
        if error is not None:
            raise error
        return DeliveryResult(
            channel=message.channel,
            message_type=message.message_type,
            message_id=f"msg-{len(self.sent)}",
        )

    def sent_to(self, channel: str) -> List[PushMessage]:
        return [m for m in self.sent if m.channel == channel]

    def of_type(self, message_type) -> List[PushMessage]:
        return [m for m in self.sent if m.message_type is message_type]


@pytest.fixture
def policy() -> LivenessPolicy:
    return LivenessPolicy(
        response_timeout=timedelta(seconds=600),
        heartbeat_freshness_window=timedelta(seconds=180),
    )


@pytest.fixture
def sweep_settings() -> SweepSettings:
    return SweepSettings(
        response_timeout=600,
        heartbeat_freshness_window=180,
        max_concurrency=10,
        operation_timeout=2.0,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest_asyncio.fixture
async def db_manager(tmp_path):
    manager = DatabaseManager(
        DatabaseSettings(),
        url=f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}",
    )
    await manager.initialize()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def repository(db_manager) -> DeviceRepository:
    return DeviceRepository(db_manager)


@pytest.fixture
def coordinator(repository, transport, policy, sweep_settings) -> SweepCoordinator:
    return SweepCoordinator(
        repository=repository,
        evaluator=LivenessEvaluator(repository, policy, sweep_settings),
        fanout=AlertFanout(transport, sweep_settings.operation_timeout),
        dispatcher=ProbeDispatcher(repository, transport, sweep_settings),
    )


async def seed_family(
    repository: DeviceRepository,
    family_id: str = "fam-1",
    parent_tokens=("parent-token-a",),
    creator_token: Optional[str] = None,
    partner_tokens=(),
):
    return await repository.add_family(
        family_id,
        name="Test Family",
        parent_tokens=parent_tokens,
        creator_token=creator_token,
        partner_tokens=partner_tokens,
    )

"""End-to-end sweep cycles against a temporary registry."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.constants import LivenessState, MessageType
from database.models import DeviceKey
from exceptions import SnapshotUnavailableError, TokenInvalidError
from monitoring.sweep import SweepCoordinator
from utils.helpers import TimeHelper

from conftest import seed_family


KEY = DeviceKey("fam-1", "dev-1")


def _ago(now, seconds):
    return now - timedelta(seconds=seconds)


async def _state(repository, key=KEY):
    return (await repository.get_device(key)).liveness_state


class TestEscalation:
    @pytest.mark.asyncio
    async def test_running_app_ignoring_probe_is_blocked_and_alerted_once(
        self, repository, transport, coordinator
    ):
        now = TimeHelper.get_utc_now()
        await seed_family(repository, parent_tokens=("guardian-1", "guardian-2"))
        await repository.add_device(
            "fam-1", "dev-1", name="Tablet", notification_channel="child-1",
            last_probe_sent_at=_ago(now, 601), last_heartbeat_at=_ago(now, 51),
        )

        report = await coordinator.run_cycle(now=now)

        assert await _state(repository) is LivenessState.BLOCKED
        assert report.blocked == [KEY]
        assert report.to_dict()["tricksterCount"] == 1
        alerts = transport.of_type(MessageType.POLICY_ALERT)
        assert sorted(m.channel for m in alerts) == ["guardian-1", "guardian-2"]
        # Blocked devices are not probed again
        assert transport.of_type(MessageType.PROBE) == []

    @pytest.mark.asyncio
    async def test_second_cycle_does_not_realert(self, repository, transport, coordinator):
        now = TimeHelper.get_utc_now()
        await seed_family(repository)
        await repository.add_device(
            "fam-1", "dev-1", notification_channel="child-1",
            last_probe_sent_at=_ago(now, 601), last_heartbeat_at=_ago(now, 51),
        )

        await coordinator.run_cycle(now=now)
        second = await coordinator.run_cycle(now=now + timedelta(seconds=300))

        assert len(transport.of_type(MessageType.POLICY_ALERT)) == 1
        assert second.blocked == []
        assert await _state(repository) is LivenessState.BLOCKED
        assert coordinator.cycles_completed == 2

    @pytest.mark.asyncio
    async def test_guardian_channel_listed_twice_gets_one_alert(
        self, repository, transport, coordinator
    ):
        now = TimeHelper.get_utc_now()
        await seed_family(repository, parent_tokens=(), creator_token="X", partner_tokens=("X",))
        await repository.add_device(
            "fam-1", "dev-1", notification_channel="child-1",
            last_probe_sent_at=_ago(now, 601), last_heartbeat_at=_ago(now, 51),
        )

        report = await coordinator.run_cycle(now=now)

        assert len(transport.sent_to("X")) == 1
        assert report.alerts[KEY].delivered == ["X"]


class TestClassification:
    @pytest.mark.asyncio
    async def test_stale_heartbeat_is_offline_without_alert(self, repository, transport, coordinator):
        now = TimeHelper.get_utc_now()
        await seed_family(repository)
        await repository.add_device(
            "fam-1", "dev-1", notification_channel="child-1",
            last_probe_sent_at=_ago(now, 601), last_heartbeat_at=_ago(now, 601),
        )

        await coordinator.run_cycle(now=now)

        assert await _state(repository) is LivenessState.OFFLINE
        assert transport.of_type(MessageType.POLICY_ALERT) == []
        # Offline devices keep receiving probes
        assert len(transport.of_type(MessageType.PROBE)) == 1

    @pytest.mark.asyncio
    async def test_valid_response_is_responding(self, repository, transport, coordinator):
        now = TimeHelper.get_utc_now()
        await seed_family(repository)
        await repository.add_device(
            "fam-1", "dev-1", notification_channel="child-1",
            last_probe_sent_at=_ago(now, 601), last_probe_responded_at=_ago(now, 301),
            last_heartbeat_at=_ago(now, 51),
        )

        await coordinator.run_cycle(now=now)

        device = await repository.get_device(KEY)
        assert device.liveness_state is LivenessState.RESPONDING
        assert device.is_responding
        assert device.last_probe_sent_at > _ago(now, 1)

    @pytest.mark.asyncio
    async def test_old_response_does_not_satisfy_next_probe(self, repository, transport, coordinator):
        now = TimeHelper.get_utc_now()
        await seed_family(repository)
        await repository.add_device(
            "fam-1", "dev-1", notification_channel="child-1",
            last_probe_sent_at=_ago(now, 100), last_probe_responded_at=_ago(now, 50),
        )

        # Cycle 1: answers probe N, probe N+1 goes out
        await coordinator.run_cycle(now=now)
        assert await _state(repository) is LivenessState.RESPONDING

        # The old answer is all there is; the app keeps heartbeating
        later = now + timedelta(seconds=700)
        await repository.record_heartbeat(KEY, later - timedelta(seconds=50))
        await coordinator.run_cycle(now=later)

        assert await _state(repository) is LivenessState.BLOCKED

    @pytest.mark.asyncio
    async def test_never_probed_device_stays_unknown_and_gets_first_probe(
        self, repository, transport, coordinator
    ):
        await seed_family(repository)
        await repository.add_device("fam-1", "dev-1", notification_channel="child-1")

        report = await coordinator.run_cycle()

        assert await _state(repository) is LivenessState.UNKNOWN
        assert report.to_dict()["probesSent"] == 1


class TestChannelInvalidation:
    @pytest.mark.asyncio
    async def test_revoked_channel_is_excluded_from_later_cycles(
        self, repository, transport, coordinator
    ):
        now = TimeHelper.get_utc_now()
        await seed_family(repository)
        await repository.add_device("fam-1", "dev-1", notification_channel="child-1")
        transport.failures["child-1"] = TokenInvalidError("unregistered", channel="child-1")

        first = await coordinator.run_cycle(now=now)
        second = await coordinator.run_cycle(now=now + timedelta(seconds=900))

        assert first.dispatch.invalidated == [KEY]
        assert KEY in second.dispatch.skipped
        assert KEY in second.evaluation.evaluation.excluded
        assert await _state(repository) is LivenessState.UNKNOWN


class TestFailures:
    @pytest.mark.asyncio
    async def test_snapshot_failure_aborts_cycle(self):
        repository = MagicMock()
        repository.fetch_snapshot = AsyncMock(side_effect=SnapshotUnavailableError("db down"))
        evaluator, fanout, dispatcher = AsyncMock(), AsyncMock(), AsyncMock()
        coordinator = SweepCoordinator(repository, evaluator, fanout, dispatcher)

        with pytest.raises(SnapshotUnavailableError):
            await coordinator.run_cycle()

        evaluator.run.assert_not_awaited()
        dispatcher.dispatch_probes.assert_not_awaited()
        assert coordinator.cycles_completed == 0


class SimulatedClock:
    def __init__(self, start):
        self.now = start

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock(monkeypatch):
    simulated = SimulatedClock(TimeHelper.get_utc_now().replace(microsecond=0))
    monkeypatch.setattr(TimeHelper, "get_utc_now", staticmethod(lambda: simulated.now))
    return simulated


class TestScheduledCadence:
    """Consecutive cycles at sweep.interval (300s) with response_timeout 600s."""

    INTERVAL = 300

    @pytest.mark.asyncio
    async def test_silent_device_with_running_app_is_blocked(
        self, repository, transport, coordinator, clock
    ):
        await seed_family(repository)
        await repository.add_device("fam-1", "dev-1", notification_channel="child-1")

        blocked_in_cycle = []
        for cycle in range(6):
            if cycle:
                clock.advance(self.INTERVAL)
            await repository.record_heartbeat(KEY, clock.now - timedelta(seconds=10))
            report = await coordinator.run_cycle()
            if report.blocked:
                blocked_in_cycle.append(cycle)

        # First probe at cycle 0 is 900s old at cycle 3
        assert blocked_in_cycle == [3]
        assert await _state(repository) is LivenessState.BLOCKED
        assert len(transport.of_type(MessageType.POLICY_ALERT)) == 1
        assert len(transport.of_type(MessageType.PROBE)) == 3

    @pytest.mark.asyncio
    async def test_device_that_goes_quiet_without_heartbeat_turns_offline(
        self, repository, transport, coordinator, clock
    ):
        await seed_family(repository)
        await repository.add_device("fam-1", "dev-1", notification_channel="child-1")

        await coordinator.run_cycle()
        await repository.record_probe_response(KEY, clock.advance(60))

        states = []
        for _ in range(5):
            clock.advance(self.INTERVAL - 60 if not states else self.INTERVAL)
            await coordinator.run_cycle()
            states.append(await _state(repository))

        # Answered once, then silent: the probe sent in cycle 1 expires in cycle 4
        assert states == [
            LivenessState.RESPONDING,
            LivenessState.RESPONDING,
            LivenessState.RESPONDING,
            LivenessState.OFFLINE,
            LivenessState.OFFLINE,
        ]
        assert transport.of_type(MessageType.POLICY_ALERT) == []
        assert len(transport.of_type(MessageType.PROBE)) == 6

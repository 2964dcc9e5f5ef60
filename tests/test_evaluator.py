"""Tests for the pure liveness classification and the evaluator service."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from config.constants import LivenessState
from config.settings import SweepSettings
from database.models import DeviceRecord, FamilyRecord, RegistrySnapshot
from exceptions import DatabaseQueryError
from monitoring.evaluator import LivenessEvaluator, LivenessPolicy, evaluate

from conftest import T0, at


def _device(**kwargs) -> DeviceRecord:
    defaults = dict(
        family_id="fam-1",
        id="dev-1",
        name="Tablet",
        notification_channel="child-token-1",
        last_probe_sent_at=T0,
    )
    defaults.update(kwargs)
    return DeviceRecord(**defaults)


def _families(*devices: DeviceRecord):
    return {"fam-1": FamilyRecord(id="fam-1", parent_tokens=("p1",), devices=tuple(devices))}


def _classify(device: DeviceRecord, now, policy):
    return evaluate([device], _families(device), now, policy)


class TestPolicy:
    def test_from_settings_uses_configured_thresholds(self):
        settings = SweepSettings(response_timeout=120, heartbeat_freshness_window=45)
        policy = LivenessPolicy.from_settings(settings)
        assert policy.response_timeout == timedelta(seconds=120)
        assert policy.heartbeat_freshness_window == timedelta(seconds=45)


class TestScenarios:
    def test_running_app_without_response_is_blocked(self, policy):
        device = _device(last_heartbeat_at=at(550))
        evaluation = _classify(device, at(601), policy)

        assert evaluation.classifications[device.key] is LivenessState.BLOCKED
        assert len(evaluation.escalations) == 1
        transition = evaluation.escalations[0].transition
        assert transition.via is LivenessState.SUSPECTED
        assert transition.blocked_at == at(601)

    def test_stale_heartbeat_without_response_is_offline(self, policy):
        device = _device(last_heartbeat_at=at(0))
        evaluation = _classify(device, at(601), policy)

        assert evaluation.classifications[device.key] is LivenessState.OFFLINE
        assert evaluation.escalations == []

    def test_response_within_timeout_stands_until_next_probe(self, policy):
        device = _device(last_probe_responded_at=at(300), last_heartbeat_at=at(550))
        evaluation = _classify(device, at(601), policy)

        assert evaluation.classifications[device.key] is LivenessState.RESPONDING
        assert evaluation.escalations == []


class TestResponding:
    @pytest.mark.parametrize("previous", [
        LivenessState.UNKNOWN,
        LivenessState.OFFLINE,
        LivenessState.SUSPECTED,
        LivenessState.RESPONDING,
    ])
    def test_valid_fresh_response_is_responding_from_any_non_blocked_state(self, policy, previous):
        device = _device(last_probe_responded_at=at(10), liveness_state=previous)
        evaluation = _classify(device, at(60), policy)
        assert evaluation.classifications[device.key] is LivenessState.RESPONDING

    def test_unchanged_state_produces_no_transition(self, policy):
        device = _device(last_probe_responded_at=at(10), liveness_state=LivenessState.RESPONDING)
        evaluation = _classify(device, at(60), policy)
        assert evaluation.transitions == []

    def test_response_exactly_at_timeout_boundary_still_counts(self, policy):
        device = _device(last_probe_responded_at=at(1))
        evaluation = _classify(device, at(601), policy)
        assert evaluation.classifications[device.key] is LivenessState.RESPONDING

    def test_response_older_than_timeout_is_non_responsive(self, policy):
        device = _device(last_probe_responded_at=at(1), last_heartbeat_at=at(590))
        evaluation = _classify(device, at(700), policy)
        assert evaluation.classifications[device.key] is LivenessState.BLOCKED


class TestStaleness:
    def test_response_before_current_probe_is_ignored(self, policy):
        # Answered probe N at t=0; probe N+1 went out at t=100
        device = _device(
            last_probe_sent_at=at(100),
            last_probe_responded_at=at(0),
            last_heartbeat_at=at(650),
        )
        evaluation = _classify(device, at(701), policy)
        assert evaluation.classifications[device.key] is LivenessState.BLOCKED

    def test_response_equal_to_probe_time_is_not_valid(self, policy):
        device = _device(last_probe_responded_at=T0, last_heartbeat_at=T0)
        evaluation = _classify(device, at(601), policy)
        assert evaluation.classifications[device.key] is LivenessState.OFFLINE

    def test_outstanding_probe_inside_window_leaves_state_unchanged(self, policy):
        device = _device(
            last_probe_sent_at=at(100),
            last_probe_responded_at=at(0),
            liveness_state=LivenessState.RESPONDING,
        )
        evaluation = _classify(device, at(300), policy)

        assert device.key in evaluation.awaiting
        assert evaluation.classifications[device.key] is LivenessState.RESPONDING
        assert evaluation.transitions == []

    def test_window_runs_from_oldest_unanswered_probe(self, policy):
        # Re-probed every 300s since t=0, never answered
        device = _device(
            first_unanswered_probe_at=T0,
            last_probe_sent_at=at(600),
            last_heartbeat_at=at(890),
        )
        evaluation = _classify(device, at(900), policy)

        assert device.key not in evaluation.awaiting
        assert evaluation.classifications[device.key] is LivenessState.BLOCKED

    def test_recent_first_unanswered_probe_is_still_awaiting(self, policy):
        device = _device(
            first_unanswered_probe_at=at(400),
            last_probe_sent_at=at(700),
            last_probe_responded_at=at(350),
            last_heartbeat_at=at(990),
        )
        evaluation = _classify(device, at(1000), policy)

        assert device.key in evaluation.awaiting


class TestHeartbeat:
    def test_heartbeat_at_exact_window_is_not_running(self, policy):
        device = _device(last_heartbeat_at=at(421))
        evaluation = _classify(device, at(601), policy)
        assert evaluation.classifications[device.key] is LivenessState.OFFLINE

    def test_missing_heartbeat_means_not_running(self, policy):
        evaluation = _classify(_device(), at(601), policy)
        assert evaluation.classifications[_device().key] is LivenessState.OFFLINE

    def test_probe_timestamps_never_stand_in_for_heartbeat(self, policy):
        # A recent probe send says nothing about the app process
        device = _device(last_probe_sent_at=at(0), last_heartbeat_at=None)
        evaluation = _classify(device, at(601), policy)
        assert evaluation.escalations == []


class TestExclusion:
    @pytest.mark.parametrize("overrides", [
        {"last_probe_sent_at": None},
        {"notification_channel": None},
        {"notification_channel": ""},
        {"channel_invalid": True},
    ])
    def test_unprobed_or_unreachable_devices_are_excluded(self, policy, overrides):
        device = _device(last_heartbeat_at=at(590), **overrides)
        evaluation = _classify(device, at(601), policy)

        assert device.key in evaluation.excluded
        assert device.key not in evaluation.classifications

    def test_blocked_device_is_never_reclassified(self, policy):
        device = _device(
            liveness_state=LivenessState.BLOCKED,
            last_probe_responded_at=at(10),
        )
        evaluation = _classify(device, at(60), policy)

        assert device.key in evaluation.excluded
        assert evaluation.transitions == []
        assert evaluation.escalations == []


class TestIdempotence:
    def test_same_snapshot_evaluates_identically(self, policy):
        devices = [
            _device(id="a", last_heartbeat_at=at(590)),
            _device(id="b", last_heartbeat_at=at(0)),
            _device(id="c", last_probe_responded_at=at(30)),
        ]
        families = _families(*devices)

        first = evaluate(devices, families, at(601), policy)
        second = evaluate(devices, families, at(601), policy)

        assert first.classifications == second.classifications
        assert [t.key for t in first.transitions] == [t.key for t in second.transitions]

    def test_escalation_missing_family_is_still_reported(self, policy):
        device = _device(last_heartbeat_at=at(590))
        evaluation = evaluate([device], {}, at(601), policy)

        assert len(evaluation.escalations) == 1
        assert evaluation.escalations[0].family is None


class TestLivenessEvaluator:
    @pytest.mark.asyncio
    async def test_confirms_escalation_only_when_write_applies(self, policy, sweep_settings):
        blocked = _device(id="a", last_heartbeat_at=at(590))
        raced = _device(id="b", last_heartbeat_at=at(590))
        snapshot = RegistrySnapshot(families=_families(blocked, raced))

        repository = AsyncMock()
        repository.update_liveness.side_effect = [True, False]

        evaluator = LivenessEvaluator(repository, policy, sweep_settings)
        report = await evaluator.run(snapshot, now=at(601))

        assert [e.device.key for e in report.confirmed_escalations] == [blocked.key]
        assert report.superseded == [raced.key]
        repository.update_liveness.assert_any_await(blocked.key, LivenessState.BLOCKED, at(601))

    @pytest.mark.asyncio
    async def test_write_failure_is_reported_not_raised(self, policy, sweep_settings):
        offline = _device(id="a", last_heartbeat_at=None)
        responding = _device(id="b", last_probe_responded_at=at(500))
        snapshot = RegistrySnapshot(families=_families(offline, responding))

        repository = AsyncMock()
        repository.update_liveness.side_effect = [DatabaseQueryError("disk full"), True]

        evaluator = LivenessEvaluator(repository, policy, sweep_settings)
        report = await evaluator.run(snapshot, now=at(601))

        assert report.write_failures == [offline.key]
        assert [t.key for t in report.applied] == [responding.key]
        assert report.confirmed_escalations == []

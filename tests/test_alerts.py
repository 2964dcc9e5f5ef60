"""Tests for guardian alert fan-out."""

import pytest

from config.constants import DeliveryFailureKind, MessageType
from database.models import DeviceRecord, FamilyRecord
from exceptions import TokenInvalidError, TransientDeliveryError
from monitoring.alerts import AlertFanout


DEVICE = DeviceRecord(family_id="fam-1", id="dev-1", name="Tablet", notification_channel="child-1")


class TestGuardianChannels:
    def test_union_drops_empties_and_duplicates_in_order(self):
        family = FamilyRecord(
            id="fam-1",
            parent_tokens=("a", "", "b"),
            creator_token="a",
            partner_tokens=("c", "b", None),
        )
        assert family.guardian_channels() == ["a", "b", "c"]

    def test_no_channels_at_all(self):
        assert FamilyRecord(id="fam-1").guardian_channels() == []


class TestNotifyGuardians:
    @pytest.mark.asyncio
    async def test_channel_in_two_legacy_fields_gets_one_alert(self, transport):
        family = FamilyRecord(id="fam-1", creator_token="X", partner_tokens=("X",))

        result = await AlertFanout(transport).notify_guardians(family, DEVICE)

        assert result.delivered == ["X"]
        assert len(transport.sent_to("X")) == 1

    @pytest.mark.asyncio
    async def test_alert_payload_identifies_device(self, transport):
        family = FamilyRecord(id="fam-1", parent_tokens=("p1",))

        await AlertFanout(transport).notify_guardians(family, DEVICE)

        message = transport.sent[0]
        assert message.message_type is MessageType.POLICY_ALERT
        assert message.data == {"deviceId": "dev-1", "deviceName": "Tablet"}
        assert message.to_payload()["message"]["data"]["type"] == "policy_alert"

    @pytest.mark.asyncio
    async def test_one_failing_channel_does_not_suppress_the_rest(self, transport):
        family = FamilyRecord(id="fam-1", parent_tokens=("p1", "p2", "p3"))
        transport.failures["p2"] = TokenInvalidError("unregistered", channel="p2")
        transport.failures["p3"] = TransientDeliveryError("503", channel="p3")

        result = await AlertFanout(transport).notify_guardians(family, DEVICE)

        assert result.delivered == ["p1"]
        assert {(e.channel, e.kind) for e in result.failed} == {
            ("p2", DeliveryFailureKind.TOKEN_INVALID),
            ("p3", DeliveryFailureKind.TRANSIENT),
        }
        assert result.attempted == 3

    @pytest.mark.asyncio
    async def test_slow_channel_times_out_as_channel_error(self, transport):
        family = FamilyRecord(id="fam-1", parent_tokens=("slow", "fast"))
        transport.hang.add("slow")

        result = await AlertFanout(transport, operation_timeout=0.1).notify_guardians(family, DEVICE)

        assert result.delivered == ["fast"]
        assert result.failed[0].kind is DeliveryFailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_family_without_channels_sends_nothing(self, transport):
        result = await AlertFanout(transport).notify_guardians(FamilyRecord(id="fam-1"), DEVICE)

        assert result.attempted == 0
        assert transport.sent == []

"""Tests for HttpPushTransport using httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from config.constants import ChannelStatus, MessageType
from config.settings import PushSettings
from exceptions import DeliveryTimeoutError, TokenInvalidError, TransientDeliveryError
from monitoring.transport import (
    HttpPushTransport,
    SendPacer,
    build_probe_message,
)

from conftest import T0


def _settings(**kwargs) -> PushSettings:
    defaults = dict(
        endpoint="https://push.test/v1",
        project_id="proj",
        access_token="secret-token",
        pacing_delay=0,
    )
    defaults.update(kwargs)
    return PushSettings(**defaults)


def _transport(handler, **settings) -> HttpPushTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpPushTransport(_settings(**settings), client=client)


def _fcm_error(status: int, error_status: str, error_code=None) -> httpx.Response:
    details = [{"@type": "type.googleapis.com/google.firebase.fcm.v1.FcmError",
                "errorCode": error_code}] if error_code else []
    return httpx.Response(
        status,
        json={"error": {"code": status, "status": error_status, "details": details}},
    )


PROBE = build_probe_message("child-token-0123456789", "1700000000000_dev-1", T0)


class TestSend:
    @pytest.mark.asyncio
    async def test_posts_v1_payload_with_bearer_token(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"name": "projects/proj/messages/42"})

        result = await _transport(handler).send(PROBE)

        assert captured["url"] == "https://push.test/v1/projects/proj/messages:send"
        assert captured["auth"] == "Bearer secret-token"
        message = captured["body"]["message"]
        assert message["token"] == "child-token-0123456789"
        assert message["data"] == {
            "type": "probe",
            "probeId": "1700000000000_dev-1",
            "sentAt": "2026-03-01T12:00:00+00:00",
        }
        assert result.message_id == "projects/proj/messages/42"
        assert result.message_type is MessageType.PROBE


class TestFailureClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(404),
        _fcm_error(404, "NOT_FOUND", "UNREGISTERED"),
        _fcm_error(400, "INVALID_ARGUMENT", "INVALID_ARGUMENT"),
    ])
    async def test_revoked_channel_is_token_invalid(self, response):
        transport = _transport(lambda request: response)

        with pytest.raises(TokenInvalidError) as exc_info:
            await transport.send(PROBE)

        assert exc_info.value.is_permanent
        assert "child-token-" in exc_info.value.details["channel"]
        assert "0123456789" not in exc_info.value.details["channel"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503, 401])
    async def test_server_and_quota_errors_are_transient(self, status):
        transport = _transport(lambda request: _fcm_error(status, "UNAVAILABLE"))

        with pytest.raises(TransientDeliveryError) as exc_info:
            await transport.send(PROBE)

        assert exc_info.value.status_code == status
        assert not exc_info.value.is_permanent

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientDeliveryError):
            await _transport(handler).send(PROBE)

    @pytest.mark.asyncio
    async def test_timeout_is_classified_separately(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(DeliveryTimeoutError):
            await _transport(handler).send(PROBE)


class TestCheckChannel:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("response, expected", [
        (httpx.Response(200, json={"name": "m"}), ChannelStatus.ACTIVE),
        (_fcm_error(404, "NOT_FOUND", "UNREGISTERED"), ChannelStatus.DELETED),
        (httpx.Response(503), ChannelStatus.OFFLINE),
    ])
    async def test_status_mapping(self, response, expected):
        sent = []

        def handler(request):
            sent.append(json.loads(request.content)["message"]["data"]["type"])
            return response

        status = await _transport(handler).check_channel("child-token")

        assert status is expected
        assert sent == ["status_check"]


class TestPacer:
    @pytest.mark.asyncio
    async def test_consecutive_waits_are_spaced(self):
        pacer = SendPacer(0.05)
        loop = asyncio.get_running_loop()

        start = loop.time()
        for _ in range(3):
            await pacer.wait()
        elapsed = loop.time() - start

        assert elapsed >= 0.09

    @pytest.mark.asyncio
    async def test_zero_delay_never_sleeps(self):
        pacer = SendPacer(0)
        await pacer.wait()
        assert pacer._last_send is None

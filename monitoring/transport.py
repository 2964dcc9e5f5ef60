"""
============================================================================
LIVENESS SWEEP - PUSH TRANSPORT
============================================================================
Delivers probe, alert and status-check messages to opaque notification
channels and classifies every failure.

Failure classes
---------------
TokenInvalidError       the channel is revoked or unknown (permanent)
TransientDeliveryError  network errors, rate limiting, 5xx responses
DeliveryTimeoutError    the send exceeded the request timeout

Pacing
------
All sends share one SendPacer which spaces consecutive requests by at
least ``push.pacing_delay`` seconds. Callers still fire sends as
concurrent tasks; the pacer only serializes the moment each request
leaves the process.
============================================================================
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from config.constants import (
    INVALID_TOKEN_ERROR_CODES,
    TRANSIENT_HTTP_STATUSES,
    ChannelStatus,
    MessageType,
)
from config.settings import PushSettings
from database.models import DeviceRecord
from exceptions import (
    DeliveryException,
    DeliveryTimeoutError,
    TokenInvalidError,
    TransientDeliveryError,
)
from utils.helpers import ChannelHelper, TimeHelper
from utils.logger import get_logger


logger = get_logger("Transport")


# ============================================================================
# MESSAGES
# ============================================================================

@dataclass(frozen=True)
class PushMessage:
    """
    A single message addressed to one channel.

    ``data`` is the key/value payload the app receives. Background
    messages wake the app silently; the others are shown to the user.
    """
    channel: str
    message_type: MessageType
    data: Dict[str, str] = field(default_factory=dict)
    background: bool = True
    title: Optional[str] = None
    body: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Request body in the push service's v1 send format."""
        message: Dict[str, Any] = {
            "token": self.channel,
            "data": {"type": self.message_type.value, **self.data},
            "android": {"priority": "high"},
        }

        if self.background:
            message["apns"] = {
                "headers": {"apns-push-type": "background", "apns-priority": "5"},
                "payload": {"aps": {"content-available": 1}},
            }
        else:
            message["notification"] = {"title": self.title or "", "body": self.body or ""}
            message["apns"] = {
                "headers": {"apns-push-type": "alert", "apns-priority": "10"},
                "payload": {"aps": {"sound": "default", "content-available": 1}},
            }

        return {"message": message}


def build_probe_message(channel: str, probe_id: str, sent_at: datetime) -> PushMessage:
    return PushMessage(
        channel=channel,
        message_type=MessageType.PROBE,
        data={"probeId": probe_id, "sentAt": TimeHelper.isoformat(sent_at)},
    )


def build_alert_message(channel: str, device: DeviceRecord) -> PushMessage:
    return PushMessage(
        channel=channel,
        message_type=MessageType.POLICY_ALERT,
        data={"deviceId": device.id, "deviceName": device.display_name},
        background=False,
        title="Protection disabled",
        body=f"{device.display_name} stopped answering while the app is still running",
    )


def build_status_check_message(channel: str) -> PushMessage:
    return PushMessage(
        channel=channel,
        message_type=MessageType.STATUS_CHECK,
        data={"timestamp": TimeHelper.isoformat(TimeHelper.get_utc_now())},
    )


@dataclass(frozen=True)
class DeliveryResult:
    """Acknowledgement returned by the push service."""
    channel: str
    message_type: MessageType
    message_id: Optional[str] = None
    delivered_at: datetime = field(default_factory=TimeHelper.get_utc_now)


# ============================================================================
# PACER
# ============================================================================

class SendPacer:
    """
    Enforces a minimum spacing between consecutive sends.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._lock = asyncio.Lock()
        self._last_send: Optional[float] = None

    async def wait(self) -> None:
        if self.delay <= 0:
            return

        async with self._lock:
            loop = asyncio.get_running_loop()
            if self._last_send is not None:
                remaining = self.delay - (loop.time() - self._last_send)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_send = loop.time()


# ============================================================================
# TRANSPORT INTERFACE
# ============================================================================

class PushTransport(ABC):
    """
    Interface the dispatcher and fan-out depend on.
    """

    @abstractmethod
    async def send(self, message: PushMessage) -> DeliveryResult:
        """
        Deliver *message* or raise a DeliveryException subclass.
        """

    async def check_channel(self, channel: str) -> ChannelStatus:
        """
        Send a silent status-check message and report whether the app
        behind *channel* is still installed.
        """
        try:
            await self.send(build_status_check_message(channel))
        except TokenInvalidError:
            return ChannelStatus.DELETED
        except DeliveryException as e:
            logger.info(
                f"[Transport] Status check for {ChannelHelper.mask(channel)} "
                f"inconclusive: {e.message}"
            )
            return ChannelStatus.OFFLINE
        return ChannelStatus.ACTIVE

    async def close(self) -> None:
        """Release network resources."""


# ============================================================================
# HTTP PUSH TRANSPORT
# ============================================================================

class HttpPushTransport(PushTransport):
    """
    Push transport backed by an httpx AsyncClient.

    Parameters
    ----------
    settings : PushSettings
        Endpoint, credentials, timeout and pacing.
    client : httpx.AsyncClient | None
        Injected client (tests pass one built on httpx.MockTransport).
        When omitted the transport creates and owns its own client.
    """

    def __init__(self, settings: PushSettings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.send_url = settings.send_url
        self._pacer = SendPacer(settings.pacing_delay)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout, connect=min(settings.request_timeout, 10)),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            headers={"User-Agent": "LivenessSweep/1.0"},
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.settings.access_token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def send(self, message: PushMessage) -> DeliveryResult:
        masked = ChannelHelper.mask(message.channel)
        await self._pacer.wait()

        try:
            response = await self._client.post(
                self.send_url,
                json=message.to_payload(),
                headers=self._headers(),
            )
        except httpx.TimeoutException as e:
            raise DeliveryTimeoutError(
                f"Push send timed out for {masked}",
                channel=message.channel,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise TransientDeliveryError(
                f"Push service unreachable: {type(e).__name__}",
                channel=message.channel,
                cause=e,
            ) from e

        if response.is_success:
            message_id = self._parse_message_id(response)
            logger.debug(
                f"[Transport] {message.message_type.value} delivered to {masked} "
                f"(id={message_id})"
            )
            return DeliveryResult(
                channel=message.channel,
                message_type=message.message_type,
                message_id=message_id,
            )

        raise self._classify_failure(message.channel, response)

    @staticmethod
    def _parse_message_id(response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get("name")
        except (ValueError, AttributeError):
            return None

    @staticmethod
    def _provider_code(response: httpx.Response) -> Optional[str]:
        """
        Extract the most specific error code from an error body of the form
        ``{"error": {"status": ..., "details": [{"errorCode": ...}]}}``.
        """
        try:
            error = response.json().get("error") or {}
        except (ValueError, AttributeError):
            return None

        if not isinstance(error, dict):
            return None

        for detail in error.get("details") or []:
            if isinstance(detail, dict) and detail.get("errorCode"):
                return detail["errorCode"]
        return error.get("status")

    def _classify_failure(self, channel: str, response: httpx.Response) -> DeliveryException:
        status = response.status_code
        provider_code = self._provider_code(response)
        masked = ChannelHelper.mask(channel)

        if status == 404 or provider_code in INVALID_TOKEN_ERROR_CODES:
            return TokenInvalidError(
                f"Channel {masked} rejected: {provider_code or status}",
                channel=channel,
                status_code=status,
                provider_code=provider_code,
            )

        if status in TRANSIENT_HTTP_STATUSES or status >= 500:
            return TransientDeliveryError(
                f"Push service returned {status} for {masked}",
                channel=channel,
                status_code=status,
                provider_code=provider_code,
            )

        # Auth and quota misconfiguration are not the channel's fault
        return TransientDeliveryError(
            f"Push request refused with {status} ({provider_code or 'no code'})",
            channel=channel,
            status_code=status,
            provider_code=provider_code,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
            logger.info("[Transport] HTTP client closed")

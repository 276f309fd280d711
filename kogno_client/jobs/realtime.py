"""
Push channel transports for job updates.

A transport delivers broadcast events for a named channel and reports the
subscription state through a status callback. ``BroadcastHub`` keeps
everything in-process; ``SSEPushTransport`` streams server-sent events from
the API with httpx.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from ..config.logging import get_logger

logger = get_logger(__name__)

JOB_PROGRESS_EVENT = "job_progress"
JOB_UPDATE_EVENT = "job_update"


def jobs_channel(anon_id: str) -> str:
    return f"user:{anon_id}:jobs"


class ChannelStatus(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


@dataclass
class ChannelEvent:
    event: str
    payload: dict[str, Any] = field(default_factory=dict)


EventCallback = Callable[[ChannelEvent], None]
StatusCallback = Callable[[ChannelStatus], None]


class PushSubscription(ABC):
    @abstractmethod
    async def close(self) -> None:
        """Stop delivery; calling it again is a no-op"""


class PushTransport(ABC):
    @abstractmethod
    async def subscribe(
        self, channel: str, on_event: EventCallback, on_status: StatusCallback
    ) -> PushSubscription: ...


class _HubSubscription(PushSubscription):
    def __init__(self, hub: "BroadcastHub", channel: str, listener: "_Listener"):
        self.hub = hub
        self.channel = channel
        self.listener = listener
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub._discard(self.channel, self.listener)


@dataclass(eq=False)
class _Listener:
    on_event: EventCallback
    on_status: StatusCallback


class BroadcastHub(PushTransport):
    """In-process publish/subscribe hub"""

    def __init__(self, acknowledge: bool = True):
        self.acknowledge = acknowledge
        self._channels: dict[str, set[_Listener]] = {}

    async def subscribe(
        self, channel: str, on_event: EventCallback, on_status: StatusCallback
    ) -> PushSubscription:
        listener = _Listener(on_event, on_status)
        self._channels.setdefault(channel, set()).add(listener)
        if self.acknowledge:
            asyncio.get_running_loop().call_soon(self._notify, listener, ChannelStatus.SUBSCRIBED)
        return _HubSubscription(self, channel, listener)

    def _discard(self, channel: str, listener: _Listener) -> None:
        listeners = self._channels.get(channel)
        if listeners is None:
            return
        listeners.discard(listener)
        if not listeners:
            del self._channels[channel]

    def _notify(self, listener: _Listener, status: ChannelStatus) -> None:
        # Listener may have gone away before a deferred notification ran
        if any(listener in listeners for listeners in self._channels.values()):
            listener.on_status(status)

    def broadcast(self, channel: str, event: str, payload: dict[str, Any]) -> int:
        """Deliver an event to every current listener, returning how many got it"""
        listeners = list(self._channels.get(channel, ()))
        for listener in listeners:
            listener.on_event(ChannelEvent(event, dict(payload)))
        return len(listeners)

    def set_status(self, channel: str, status: ChannelStatus) -> None:
        for listener in list(self._channels.get(channel, ())):
            listener.on_status(status)

    def fail(self, channel: str, status: ChannelStatus = ChannelStatus.CHANNEL_ERROR) -> None:
        self.set_status(channel, status)

    def listener_count(self, channel: str | None = None) -> int:
        if channel is not None:
            return len(self._channels.get(channel, ()))
        return sum(len(listeners) for listeners in self._channels.values())


def iter_sse_events(lines: list[str]) -> list[ChannelEvent]:
    """Parse complete server-sent event frames from a block of lines"""
    events = []
    event_name = "message"
    data_lines: list[str] = []
    for line in lines:
        if not line:
            if data_lines:
                events.append(_decode_frame(event_name, data_lines))
            event_name, data_lines = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)
    return events


def _decode_frame(event_name: str, data_lines: list[str]) -> ChannelEvent:
    raw = "\n".join(data_lines)
    try:
        payload = json.loads(raw)
    except ValueError:
        payload = {"data": raw}
    if not isinstance(payload, dict):
        payload = {"data": payload}
    # Broadcast envelopes wrap the body in "payload"
    if isinstance(payload.get("payload"), dict):
        event_name = payload.get("event", event_name)
        payload = payload["payload"]
    return ChannelEvent(event_name, payload)


class _SSESubscription(PushSubscription):
    def __init__(self, task: asyncio.Task):
        self.task = task
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass


class SSEPushTransport(PushTransport):
    """Streams ``GET <path>/<channel>`` as server-sent events"""

    def __init__(self, client: httpx.AsyncClient, path: str = "/realtime"):
        self.client = client
        self.path = path.rstrip("/")

    async def subscribe(
        self, channel: str, on_event: EventCallback, on_status: StatusCallback
    ) -> PushSubscription:
        task = asyncio.create_task(self._stream(channel, on_event, on_status))
        return _SSESubscription(task)

    async def _stream(
        self, channel: str, on_event: EventCallback, on_status: StatusCallback
    ) -> None:
        url = f"{self.path}/{channel}"
        try:
            async with self.client.stream(
                "GET", url, headers={"Accept": "text/event-stream"}
            ) as response:
                if response.status_code >= 400:
                    logger.warning(
                        "Push channel rejected", channel=channel, status_code=response.status_code
                    )
                    on_status(ChannelStatus.CHANNEL_ERROR)
                    return

                on_status(ChannelStatus.SUBSCRIBED)
                pending: list[str] = []
                async for line in response.aiter_lines():
                    pending.append(line.rstrip("\r"))
                    if line.strip():
                        continue
                    for event in iter_sse_events(pending):
                        on_event(event)
                    pending = []
        except httpx.TimeoutException as e:
            logger.warning("Push channel timed out", channel=channel, error=str(e))
            on_status(ChannelStatus.TIMED_OUT)
            return
        except httpx.HTTPError as e:
            logger.warning("Push channel failed", channel=channel, error=str(e))
            on_status(ChannelStatus.CHANNEL_ERROR)
            return

        on_status(ChannelStatus.CLOSED)

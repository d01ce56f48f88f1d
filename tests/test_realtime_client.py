"""
Tests for the client realtime connection: frame decoding, reconnect and
resync.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from tableside.client.bus import EventBus
from tableside.client.realtime import RealtimeClient, with_role
from tableside.schemas import EventType, RealtimeEvent


def _frame(event_type, payload=None):
    return RealtimeEvent(type=event_type, payload=payload or {}).model_dump_json()


class FakeSocket:
    def __init__(self, frames):
        self.frames = list(frames)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.frames or self.closed:
            raise StopAsyncIteration
        await asyncio.sleep(0)
        return self.frames.pop(0)

    async def close(self):
        self.closed = True


class FakeServer:
    """Hands out one scripted socket per connection attempt."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.urls = []

    @asynccontextmanager
    async def connect(self, url):
        self.urls.append(url)
        script = self.scripts.pop(0) if self.scripts else []
        if isinstance(script, Exception):
            raise script
        yield FakeSocket(script)


class TestHandleMessage:

    def test_publishes_decoded_event(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventType.ORDER_CREATED, received.append)
        client = RealtimeClient("ws://test/ws", bus)

        event = client.handle_message(_frame(EventType.ORDER_CREATED, {"id": 1}))

        assert event.type == EventType.ORDER_CREATED
        assert received == [event]

    def test_pong_and_garbage_are_dropped(self):
        bus = EventBus()
        received = []
        bus.subscribe(None, received.append)
        client = RealtimeClient("ws://test/ws", bus)

        assert client.handle_message("pong") is None
        assert client.handle_message('{"type": "nope"}') is None
        assert client.handle_message(b"\xff") is None
        assert received == []

    def test_role_is_added_to_url(self):
        assert with_role("ws://host/ws", "kitchen") == "ws://host/ws?role=kitchen"
        assert with_role("ws://host/ws?x=1", "waiter") == "ws://host/ws?x=1&role=waiter"


class TestReconnect:

    @pytest.mark.asyncio
    async def test_reconnects_and_resyncs(self):
        bus = EventBus()
        received = []
        bus.subscribe(None, received.append)
        resyncs = []

        async def resync():
            resyncs.append(len(received))

        server = FakeServer(
            [_frame(EventType.ORDER_CREATED)],
            ConnectionRefusedError("down"),
            [_frame(EventType.ORDER_UPDATED)],
        )
        client = RealtimeClient(
            "ws://test/ws",
            bus,
            role="waiter",
            on_reconnect=resync,
            reconnect_delay=0,
            reconnect_max_delay=0,
            connect=server.connect,
        )

        task = asyncio.create_task(client.run())
        for _ in range(100):
            if len(received) == 2:
                break
            await asyncio.sleep(0)
        await client.stop()
        await asyncio.wait_for(task, timeout=1)

        assert [e.type for e in received] == [EventType.ORDER_CREATED, EventType.ORDER_UPDATED]
        assert resyncs[0] == 1
        assert client.connections >= 2
        assert server.urls[0] == "ws://test/ws?role=waiter"

    @pytest.mark.asyncio
    async def test_failing_resync_does_not_stop_channel(self):
        bus = EventBus()

        async def broken():
            raise RuntimeError("refresh failed")

        server = FakeServer([], [_frame(EventType.BILL_CREATED)])
        client = RealtimeClient(
            "ws://test/ws", bus, on_reconnect=broken,
            reconnect_delay=0, reconnect_max_delay=0, connect=server.connect,
        )
        received = []
        bus.subscribe(EventType.BILL_CREATED, received.append)

        task = asyncio.create_task(client.run())
        for _ in range(100):
            if received:
                break
            await asyncio.sleep(0)
        await client.stop()
        await asyncio.wait_for(task, timeout=1)

        assert len(received) == 1

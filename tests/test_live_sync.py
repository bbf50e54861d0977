"""Tests for the SSE stream generator (driven directly, without an HTTP server)."""

from __future__ import annotations

import asyncio
import json
import threading

from studio_sync.services.live_sync import (
    CONNECTED_FRAME,
    KEEPALIVE_FRAME,
    SSE_HEADERS,
    LiveSyncStream,
    format_event,
    stream_response,
)
from studio_sync.services.notifier import NOTE_CHANGED, ORDER_CREATED, ChangeNotifier


class FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


def _run(coro):
    return asyncio.run(coro)


def test_format_event():
    frame = format_event("order-created", {"id": "c1", "total_amount": 50})
    lines = frame.split("\n")
    assert lines[0] == "event: order-created"
    assert json.loads(lines[1][len("data: "):]) == {"id": "c1", "total_amount": 50}
    assert frame.endswith("\n\n")


def test_keepalive_is_a_comment():
    assert KEEPALIVE_FRAME.startswith(":")
    assert CONNECTED_FRAME.startswith("event: connected\n")


def test_connected_first_then_events():
    async def scenario():
        bus = ChangeNotifier()
        stream = LiveSyncStream(FakeRequest(), ORDER_CREATED, notifier=bus, keepalive_interval=5)
        gen = stream.events()
        assert await gen.__anext__() == CONNECTED_FRAME
        assert bus.subscriber_count(ORDER_CREATED) == 1

        bus.emit(ORDER_CREATED, {"id": "c1"})
        bus.emit(ORDER_CREATED, {"id": "c2"})
        first = await gen.__anext__()
        second = await gen.__anext__()
        await gen.aclose()
        return bus, first, second

    bus, first, second = _run(scenario())
    assert first == format_event(ORDER_CREATED, {"id": "c1"})
    assert second == format_event(ORDER_CREATED, {"id": "c2"})
    assert bus.subscriber_count(ORDER_CREATED) == 0


def test_event_from_worker_thread():
    async def scenario():
        bus = ChangeNotifier()
        stream = LiveSyncStream(FakeRequest(), NOTE_CHANGED, notifier=bus, keepalive_interval=5)
        gen = stream.events()
        await gen.__anext__()
        worker = threading.Thread(target=bus.emit, args=(NOTE_CHANGED, {"person": "loic"}))
        worker.start()
        frame = await gen.__anext__()
        worker.join()
        await gen.aclose()
        return frame

    assert _run(scenario()) == format_event(NOTE_CHANGED, {"person": "loic"})


def test_keepalive_when_idle():
    async def scenario():
        stream = LiveSyncStream(FakeRequest(), ORDER_CREATED, notifier=ChangeNotifier(), keepalive_interval=0.01)
        gen = stream.events()
        await gen.__anext__()
        frame = await gen.__anext__()
        await gen.aclose()
        return frame

    assert _run(scenario()) == KEEPALIVE_FRAME


def test_keepalive_not_postponed_by_traffic():
    async def scenario():
        bus = ChangeNotifier()
        stream = LiveSyncStream(FakeRequest(), ORDER_CREATED, notifier=bus, keepalive_interval=0.3)
        gen = stream.events()
        await gen.__anext__()
        loop = asyncio.get_running_loop()
        opened = loop.time()
        await asyncio.sleep(0.2)
        bus.emit(ORDER_CREATED, {"id": "c1"})
        event = await gen.__anext__()
        keepalive = await gen.__anext__()
        elapsed = loop.time() - opened
        await gen.aclose()
        return event, keepalive, elapsed

    event, keepalive, elapsed = _run(scenario())
    assert event == format_event(ORDER_CREATED, {"id": "c1"})
    assert keepalive == KEEPALIVE_FRAME
    # due 0.3 s after opening, not 0.3 s after the event
    assert elapsed < 0.45


def test_disconnect_unsubscribes():
    async def scenario():
        bus = ChangeNotifier()
        request = FakeRequest()
        before = LiveSyncStream.active
        stream = LiveSyncStream(request, ORDER_CREATED, notifier=bus, keepalive_interval=0.01)
        gen = stream.events()
        await gen.__anext__()
        during = LiveSyncStream.active
        request.disconnected = True
        remaining = [frame async for frame in gen]
        return bus, before, during, remaining

    bus, before, during, remaining = _run(scenario())
    assert remaining == []
    assert during == before + 1
    assert LiveSyncStream.active == before
    assert bus.subscriber_count(ORDER_CREATED) == 0


def test_full_queue_drops_oldest():
    async def scenario():
        stream = LiveSyncStream(FakeRequest(), ORDER_CREATED, notifier=ChangeNotifier(), queue_size=2)
        stream._queue = asyncio.Queue(maxsize=2)
        for n in (1, 2, 3):
            stream._put(n)
        return [stream._queue.get_nowait() for _ in range(stream._queue.qsize())]

    assert _run(scenario()) == [2, 3]


def test_streams_are_independent():
    async def scenario():
        bus = ChangeNotifier()
        a = LiveSyncStream(FakeRequest(), ORDER_CREATED, notifier=bus, keepalive_interval=5).events()
        b = LiveSyncStream(FakeRequest(), ORDER_CREATED, notifier=bus, keepalive_interval=5).events()
        await a.__anext__()
        await b.__anext__()
        await a.aclose()
        bus.emit(ORDER_CREATED, {"id": "c9"})
        frame = await b.__anext__()
        await b.aclose()
        return bus, frame

    bus, frame = _run(scenario())
    assert frame == format_event(ORDER_CREATED, {"id": "c9"})
    assert bus.subscriber_count(ORDER_CREATED) == 0


def test_stream_response_headers():
    resp = stream_response(FakeRequest(), ORDER_CREATED)
    assert resp.media_type == "text/event-stream"
    for key, value in SSE_HEADERS.items():
        assert resp.headers[key.lower()] == value

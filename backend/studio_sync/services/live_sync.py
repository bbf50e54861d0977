"""Server-sent event streams that forward notifier events to dashboards.

One LiveSyncStream per connected client. Each stream owns its queue and its
notifier subscription; nothing is shared between streams.

Wire format:
    event: connected            sent once, right after the connection opens
    event: order-created        data: <serialized order>
    event: note-changed         data: <serialized note>
    : keep-alive                comment line, ignored by EventSource clients
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

from starlette.requests import Request
from starlette.responses import StreamingResponse

from studio_sync import config
from studio_sync.services import notifier as notifications

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": keep-alive\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    # disable proxy buffering (nginx and friends)
    "X-Accel-Buffering": "no",
}


def format_event(name: str, payload: Any) -> str:
    return f"event: {name}\ndata: {json.dumps(payload, default=str)}\n\n"


CONNECTED_FRAME = format_event("connected", {})


class LiveSyncStream:
    """Forwards one notifier channel to one client as SSE frames."""

    active = 0

    def __init__(
        self,
        request: Request,
        channel: str,
        notifier: Optional[notifications.ChangeNotifier] = None,
        keepalive_interval: Optional[float] = None,
        queue_size: int = 500,
    ):
        self.request = request
        self.channel = channel
        self.notifier = notifier or notifications.notifier
        self.keepalive_interval = keepalive_interval or config.SSE_KEEPALIVE_SECONDS
        self.queue_size = queue_size
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None

    def _put(self, payload: Any) -> None:
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            # Drop oldest event to make room
            self._queue.get_nowait()
            self._queue.put_nowait(payload)

    def _on_event(self, payload: Any) -> None:
        # notifier callbacks may run on a worker thread
        self._loop.call_soon_threadsafe(self._put, payload)

    async def events(self) -> AsyncIterator[str]:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        subscription = self.notifier.subscribe(self.channel, self._on_event)
        LiveSyncStream.active += 1
        logger.info("Stream opened channel=%s (active: %d)", self.channel, LiveSyncStream.active)
        try:
            # fixed schedule from the moment the stream opens; traffic does not postpone it
            next_keepalive = self._loop.time() + self.keepalive_interval
            yield CONNECTED_FRAME
            while True:
                if await self.request.is_disconnected():
                    break
                timeout = max(0.0, next_keepalive - self._loop.time())
                try:
                    payload = await asyncio.wait_for(self._queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    next_keepalive += self.keepalive_interval
                    if next_keepalive <= self._loop.time():
                        # the client was slow to read, skip missed ticks
                        next_keepalive = self._loop.time() + self.keepalive_interval
                    yield KEEPALIVE_FRAME
                    continue
                yield format_event(self.channel, payload)
        finally:
            # runs on disconnect, on cancellation after a failed write and on close
            subscription.unsubscribe()
            LiveSyncStream.active -= 1
            logger.info("Stream closed channel=%s (active: %d)", self.channel, LiveSyncStream.active)


def stream_response(request: Request, channel: str) -> StreamingResponse:
    stream = LiveSyncStream(request, channel)
    return StreamingResponse(stream.events(), media_type="text/event-stream", headers=SSE_HEADERS)

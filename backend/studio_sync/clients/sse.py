"""Minimal text/event-stream consumer for the sync client."""
import json
import logging
import threading
from typing import Any, Callable, List, NamedTuple, Optional

import requests

logger = logging.getLogger(__name__)


class SSEEvent(NamedTuple):
    event: str
    data: str

    def json(self) -> Any:
        return json.loads(self.data) if self.data else {}


class SSEParser:
    """Line-based parser. Comment lines (': ...') are keep-alives and never produce events."""

    def __init__(self):
        self._event = "message"
        self._data: List[str] = []

    def feed_line(self, line: str) -> Optional[SSEEvent]:
        if line == "":
            if not self._data and self._event == "message":
                return None
            event = SSEEvent(self._event, "\n".join(self._data))
            self._event, self._data = "message", []
            return event
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value or "message"
        elif field == "data":
            self._data.append(value)
        return None


class SSEStreamReader:
    """Reads one SSE stream on a daemon thread and calls back per event.

    `on_error` fires once when the stream fails or ends, unless close() was
    called first. The read timeout is well above the server keep-alive so a
    silent dead connection surfaces as an error.
    """

    def __init__(
        self,
        url: str,
        on_event: Callable[[SSEEvent], None],
        on_error: Callable[[Exception], None],
        session: Optional[requests.Session] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
    ):
        self.url = url
        self._on_event = on_event
        self._on_error = on_error
        self._session = session or requests.Session()
        self._timeout = (connect_timeout, read_timeout)
        self._closed = threading.Event()
        self._response: Optional[requests.Response] = None
        self._thread = threading.Thread(target=self._run, name="sse-reader", daemon=True)

    def start(self) -> "SSEStreamReader":
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            with self._session.get(
                self.url, stream=True, timeout=self._timeout, headers={"Accept": "text/event-stream"}
            ) as resp:
                self._response = resp
                resp.raise_for_status()
                parser = SSEParser()
                for line in resp.iter_lines(decode_unicode=True):
                    if self._closed.is_set():
                        return
                    event = parser.feed_line(line or "")
                    if event is not None:
                        self._on_event(event)
            if not self._closed.is_set():
                self._on_error(ConnectionError("event stream ended"))
        except Exception as e:
            if not self._closed.is_set():
                logger.warning("Event stream %s failed: %s", self.url, e)
                self._on_error(e)

    def close(self) -> None:
        self._closed.set()
        if self._response is not None:
            try:
                self._response.close()
            except Exception:
                logger.debug("Error closing event stream", exc_info=True)

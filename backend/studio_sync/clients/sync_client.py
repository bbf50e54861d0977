"""Client-side order list kept eventually consistent with the server.

Push first, poll as fallback:

    DISCONNECTED --start()--> CONNECTING --"connected"--> LIVE
    CONNECTING/LIVE --stream error--> DEGRADED (polling on, one reconnect scheduled)
    DEGRADED --reconnect timer--> CONNECTING

Every reconciliation replaces the local list with the server's full list;
pushed orders are only an optimistic preview until the next refetch.
"""
import itertools
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from studio_sync.clients.http import DashboardApiClient
from studio_sync.clients.sse import SSEEvent
from studio_sync.services.notifier import ORDER_CREATED

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None]) -> Cancellable: ...

    def call_every(self, interval: float, fn: Callable[[], None]) -> Cancellable: ...


class _RepeatingTimer:
    def __init__(self, interval: float, fn: Callable[[], None]):
        self.interval = interval
        self.fn = fn
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="sync-poll", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.fn()
            except Exception:
                logger.exception("Repeating job failed")

    def cancel(self) -> None:
        self._stop.set()


class ThreadingScheduler:
    """Wall-clock scheduler on daemon threads."""

    def call_later(self, delay: float, fn: Callable[[], None]) -> Cancellable:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer

    def call_every(self, interval: float, fn: Callable[[], None]) -> Cancellable:
        return _RepeatingTimer(interval, fn)


class OrderSyncClient:
    def __init__(
        self,
        api: Optional[DashboardApiClient] = None,
        scheduler: Optional[Scheduler] = None,
        poll_interval: float = 5.0,
        reconnect_delay: float = 10.0,
        refetch_delay: float = 2.0,
        new_flag_duration: float = 6.0,
        on_change: Optional[Callable[[List[Dict[str, Any]]], None]] = None,
        on_state_change: Optional[Callable[[SyncState], None]] = None,
    ):
        self.api = api or DashboardApiClient()
        self.scheduler = scheduler or ThreadingScheduler()
        self.poll_interval = poll_interval
        self.reconnect_delay = reconnect_delay
        self.refetch_delay = refetch_delay
        self.new_flag_duration = new_flag_duration
        self.on_change = on_change
        self.on_state_change = on_state_change

        self.state = SyncState.DISCONNECTED
        self.orders: List[Dict[str, Any]] = []
        self.new_ids: Set[str] = set()

        self._lock = threading.RLock()
        self._mounted = False
        self._loaded = False
        self._generation = itertools.count(1)
        self._stream_gen = 0
        self._fetches = itertools.count(1)
        self._applied_fetch = 0
        self._stream = None
        self._poll: Optional[Cancellable] = None
        self._reconnect: Optional[Cancellable] = None
        self._timers: Set[Cancellable] = set()

    # -- lifecycle ---------------------------------------------------------

    @property
    def polling(self) -> bool:
        return self._poll is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect is not None

    def start(self, initial_fetch: bool = True) -> None:
        with self._lock:
            if self._mounted:
                return
            self._mounted = True
            self._connect()
        if initial_fetch:
            self.refresh()

    def stop(self) -> None:
        """Tear down stream, polling, reconnect and pending timers."""
        with self._lock:
            self._mounted = False
            self._close_stream()
            self._stop_polling()
            if self._reconnect is not None:
                self._reconnect.cancel()
                self._reconnect = None
            for timer in list(self._timers):
                timer.cancel()
            self._timers.clear()
            self._set_state(SyncState.DISCONNECTED)

    def on_visibility_change(self, visible: bool) -> None:
        """Tab/window visible again: events may have been missed while suspended."""
        if visible:
            self.refresh()

    # -- stream ------------------------------------------------------------

    def _set_state(self, state: SyncState) -> None:
        if state is self.state:
            return
        logger.info("Sync state %s -> %s", self.state.value, state.value)
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _connect(self) -> None:
        with self._lock:
            self._reconnect = None
            if not self._mounted:
                return
            self._close_stream()
            gen = self._stream_gen = next(self._generation)
            self._set_state(SyncState.CONNECTING)
            try:
                stream = self.api.open_stream(
                    lambda event: self._on_stream_event(gen, event),
                    lambda exc: self._on_stream_error(gen, exc),
                )
            except Exception as e:
                self._on_stream_error(gen, e)
                return
            if gen == self._stream_gen:
                self._stream = stream
            else:
                # failed synchronously while opening
                stream.close()

    def _close_stream(self) -> None:
        self._stream_gen = 0
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.close()
            except Exception:
                logger.debug("Error closing stream", exc_info=True)

    def _on_stream_event(self, gen: int, event: SSEEvent) -> None:
        refetch_now = False
        with self._lock:
            if not self._mounted or gen != self._stream_gen:
                return
            if event.event == "connected":
                self._set_state(SyncState.LIVE)
                self._stop_polling()
                refetch_now = True
            elif event.event == ORDER_CREATED and self.state is SyncState.LIVE:
                try:
                    order = event.json()
                except ValueError:
                    logger.warning("Ignoring malformed %s event", event.event)
                    return
                self._apply_pushed(order)
                self._schedule(self.refetch_delay, self.refresh)
        if refetch_now:
            self.refresh()

    def _on_stream_error(self, gen: int, exc: Exception) -> None:
        with self._lock:
            if not self._mounted or gen != self._stream_gen:
                return
            if self.state not in (SyncState.CONNECTING, SyncState.LIVE):
                return
            logger.info("Order stream unavailable, falling back to polling: %s", exc)
            self._close_stream()
            self._set_state(SyncState.DEGRADED)
            self._start_polling()
            if self._reconnect is None:
                self._reconnect = self.scheduler.call_later(self.reconnect_delay, self._connect)

    # -- polling -----------------------------------------------------------

    def _start_polling(self) -> None:
        if self._poll is None:
            self._poll = self.scheduler.call_every(self.poll_interval, self._poll_tick)

    def _stop_polling(self) -> None:
        if self._poll is not None:
            self._poll.cancel()
            self._poll = None

    def _poll_tick(self) -> None:
        if self._mounted:
            self.refresh()

    # -- local state -------------------------------------------------------

    def _schedule(self, delay: float, fn: Callable[[], None]) -> None:
        handle: Optional[Cancellable] = None

        def fire() -> None:
            with self._lock:
                self._timers.discard(handle)
                if not self._mounted:
                    return
            fn()

        handle = self.scheduler.call_later(delay, fire)
        self._timers.add(handle)

    def _mark_new(self, ids: List[str]) -> None:
        if not ids:
            return
        self.new_ids.update(ids)

        def clear() -> None:
            with self._lock:
                self.new_ids.difference_update(ids)
                self._notify()

        self._schedule(self.new_flag_duration, clear)

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(list(self.orders))

    def _apply_pushed(self, order: Dict[str, Any]) -> None:
        order_id = order.get("id")
        if not order_id or any(o.get("id") == order_id for o in self.orders):
            return
        self.orders = [order] + self.orders
        self._mark_new([order_id])
        self._notify()

    def refresh(self) -> bool:
        """Replace local orders with the server list. Failures are logged, never raised."""
        with self._lock:
            if not self._mounted:
                return False
            seq = next(self._fetches)
        try:
            incoming = self.api.fetch_orders()
        except Exception as e:
            logger.warning("Reconciliation failed: %s", e)
            return False
        with self._lock:
            if not self._mounted:
                return False
            if seq < self._applied_fetch:
                # a fetch started later already landed; this list is older
                logger.debug("Discarding stale order list (fetch %d < %d)", seq, self._applied_fetch)
                return False
            self._applied_fetch = seq
            known = {o.get("id") for o in self.orders}
            fresh = [o["id"] for o in incoming if o.get("id") and o["id"] not in known]
            self.orders = list(incoming)
            if self._loaded:
                self._mark_new(fresh)
            self._loaded = True
            self._notify()
        return True

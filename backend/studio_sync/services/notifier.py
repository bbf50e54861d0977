"""In-process change notifications.

Provides:
- ChangeNotifier: named channels with synchronous, ordered fan-out
- notifier: the process-wide instance used by the routers and streams

Delivery is best-effort and in-process only: a subscriber sees an event only if
it is registered at the moment of emission, nothing is buffered or replayed.
Clients recover anything missed through polling. With more than one server
instance each process has its own subscribers, so this only holds for a
single-instance deployment.
"""
import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

ORDER_CREATED = "order-created"
NOTE_CHANGED = "note-changed"
CHANNELS = (ORDER_CREATED, NOTE_CHANGED)

Callback = Callable[[Any], None]


class Subscription:
    """Handle returned by ChangeNotifier.subscribe."""

    def __init__(self, notifier: "ChangeNotifier", channel: str, token: int, callback: Callback):
        self._notifier = notifier
        self.channel = channel
        self.token = token
        self.callback = callback

    def unsubscribe(self) -> None:
        self._notifier.unsubscribe(self)


class ChangeNotifier:
    """Registry of callbacks per channel.

    FastAPI runs sync endpoints in a worker thread pool, so emit() may be called
    from several threads. The registry is guarded by a lock; callbacks are
    invoked outside it, on a snapshot, in registration order.
    """

    def __init__(self, channels=CHANNELS):
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._subscribers: Dict[str, List[Tuple[int, Callback]]] = {c: [] for c in channels}

    def _check(self, channel: str) -> None:
        if channel not in self._subscribers:
            raise ValueError(f"unknown channel: {channel}")

    def subscribe(self, channel: str, callback: Callback) -> Subscription:
        self._check(channel)
        with self._lock:
            token = next(self._tokens)
            self._subscribers[channel].append((token, callback))
            total = len(self._subscribers[channel])
        logger.debug("Subscriber %s added to %s (total: %d)", token, channel, total)
        return Subscription(self, channel, token, callback)

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            entries = self._subscribers.get(subscription.channel, [])
            remaining = [e for e in entries if e[0] != subscription.token]
            removed = len(remaining) != len(entries)
            self._subscribers[subscription.channel] = remaining
        if removed:
            logger.debug("Subscriber %s removed from %s (total: %d)", subscription.token, subscription.channel, len(remaining))

    def subscriber_count(self, channel: str) -> int:
        self._check(channel)
        with self._lock:
            return len(self._subscribers[channel])

    def emit(self, channel: str, payload: Any) -> int:
        """Deliver payload to every current subscriber of channel. Returns how many were called."""
        self._check(channel)
        with self._lock:
            snapshot = list(self._subscribers[channel])
        delivered = 0
        for token, callback in snapshot:
            try:
                callback(payload)
                delivered += 1
            except Exception:
                logger.warning("Subscriber %s on %s failed", token, channel, exc_info=True)
        logger.debug("Emitted %s to %d subscriber(s)", channel, delivered)
        return delivered


# Global singleton
notifier = ChangeNotifier()

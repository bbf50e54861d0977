"""Shared fixtures: in-memory database, API client, payload factories, manual scheduler."""

from __future__ import annotations

import heapq
import itertools

import pytest
from fastapi.testclient import TestClient

from studio_sync.db.session import configure_engine, get_session


@pytest.fixture(autouse=True)
def db(monkeypatch):
    """Fresh in-memory SQLite per test, dev-mode auth unless a test sets a secret."""
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    engine = configure_engine("sqlite://")
    yield engine


@pytest.fixture()
def session(db):
    s = get_session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def client(db):
    from studio_sync.main import app

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def native_payload():
    def _make(**overrides):
        payload = {
            "commande": "H-099",
            "nom": "Client Test",
            "prix": {"total": 50},
        }
        payload.update(overrides)
        return payload

    return _make


class FakeScheduler:
    """Manual clock: jobs only run when the test advances time."""

    class Handle:
        def __init__(self, when, fn, interval=None):
            self.when = when
            self.fn = fn
            self.interval = interval
            self.cancelled = False

        def cancel(self):
            self.cancelled = True

    def __init__(self):
        self.now = 0.0
        self._seq = itertools.count()
        self._queue = []

    def _push(self, handle):
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def call_later(self, delay, fn):
        return self._push(self.Handle(self.now + delay, fn))

    def call_every(self, interval, fn):
        return self._push(self.Handle(self.now + interval, fn, interval))

    def pending(self):
        return [h for _, _, h in self._queue if not h.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = when
            if handle.interval is not None:
                handle.when = when + handle.interval
                self._push(handle)
            handle.fn()
        self.now = target


@pytest.fixture()
def scheduler():
    return FakeScheduler()

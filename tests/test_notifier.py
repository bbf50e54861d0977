"""Tests for the in-process change notifier."""

from __future__ import annotations

import threading

import pytest

from studio_sync.services.notifier import NOTE_CHANGED, ORDER_CREATED, ChangeNotifier


class TestChangeNotifier:
    def test_delivers_in_registration_order(self):
        bus = ChangeNotifier()
        calls = []
        bus.subscribe(ORDER_CREATED, lambda p: calls.append(("a", p)))
        bus.subscribe(ORDER_CREATED, lambda p: calls.append(("b", p)))
        payload = {"id": "c1"}
        assert bus.emit(ORDER_CREATED, payload) == 2
        assert calls == [("a", payload), ("b", payload)]
        # same object handed to every subscriber
        assert calls[0][1] is calls[1][1]

    def test_channels_are_isolated(self):
        bus = ChangeNotifier()
        seen = []
        bus.subscribe(NOTE_CHANGED, seen.append)
        bus.emit(ORDER_CREATED, {"id": "c1"})
        assert seen == []

    def test_no_replay_for_late_subscribers(self):
        bus = ChangeNotifier()
        bus.emit(ORDER_CREATED, {"id": "early"})
        seen = []
        bus.subscribe(ORDER_CREATED, seen.append)
        assert seen == []
        bus.emit(ORDER_CREATED, {"id": "late"})
        assert seen == [{"id": "late"}]

    def test_unsubscribe(self):
        bus = ChangeNotifier()
        seen = []
        sub = bus.subscribe(ORDER_CREATED, seen.append)
        assert bus.subscriber_count(ORDER_CREATED) == 1
        sub.unsubscribe()
        sub.unsubscribe()  # idempotent
        assert bus.subscriber_count(ORDER_CREATED) == 0
        assert bus.emit(ORDER_CREATED, {}) == 0
        assert seen == []

    def test_same_callback_twice_removed_individually(self):
        bus = ChangeNotifier()
        seen = []
        first = bus.subscribe(ORDER_CREATED, seen.append)
        bus.subscribe(ORDER_CREATED, seen.append)
        first.unsubscribe()
        bus.emit(ORDER_CREATED, 1)
        assert seen == [1]

    def test_failing_subscriber_does_not_block_others(self):
        bus = ChangeNotifier()
        seen = []

        def boom(_):
            raise RuntimeError("dead client")

        bus.subscribe(ORDER_CREATED, boom)
        bus.subscribe(ORDER_CREATED, seen.append)
        assert bus.emit(ORDER_CREATED, "x") == 1
        assert seen == ["x"]

    def test_unknown_channel(self):
        bus = ChangeNotifier()
        with pytest.raises(ValueError):
            bus.subscribe("order-updated", print)
        with pytest.raises(ValueError):
            bus.emit("order-updated", {})

    def test_concurrent_subscribe_and_emit(self):
        bus = ChangeNotifier()
        counter = []
        lock = threading.Lock()

        def record(_):
            with lock:
                counter.append(1)

        def worker():
            for _ in range(50):
                sub = bus.subscribe(ORDER_CREATED, record)
                bus.emit(ORDER_CREATED, None)
                sub.unsubscribe()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert bus.subscriber_count(ORDER_CREATED) == 0
        assert len(counter) >= 200

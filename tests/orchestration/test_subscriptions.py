"""Tests for SubscriptionBus delivery rules."""

import gc
import threading
from datetime import datetime, timedelta

import pytest

from tilespine.core.models import Report
from tilespine.orchestration.subscriptions import SubscriptionBus


def report(confidence: float = 0.9) -> Report:
    return Report.ok({"v": confidence}, confidence=confidence)


class Tile:
    def __init__(self):
        self.received = []

    def on_report(self, unit_id, rep):
        self.received.append((unit_id, rep))


class TestSubscribe:
    """Tests for subscribe / unsubscribe."""

    def test_delivers_to_unit_listeners_only(self):
        bus = SubscriptionBus()
        got_a, got_b = [], []
        bus.subscribe("a", lambda uid, r: got_a.append(uid))
        bus.subscribe("b", lambda uid, r: got_b.append(uid))

        assert bus.publish("a", report()) == 1
        assert got_a == ["a"]
        assert got_b == []

    def test_unsubscribe_is_idempotent(self):
        bus = SubscriptionBus()
        got = []
        unsubscribe = bus.subscribe("a", lambda uid, r: got.append(r))

        assert unsubscribe.active
        assert unsubscribe() is True
        assert unsubscribe() is False
        assert not unsubscribe.active
        bus.publish("a", report())
        assert got == []
        assert bus.subscriber_count("a") == 0

    def test_same_callback_twice_gets_two_handles(self):
        bus = SubscriptionBus()
        got = []

        def callback(uid, r):
            got.append(r)

        first = bus.subscribe("a", callback)
        bus.subscribe("a", callback)
        first()
        bus.publish("a", report())
        assert len(got) == 1

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError):
            SubscriptionBus().subscribe("a", "nope")

    def test_counts_and_clear(self):
        bus = SubscriptionBus()
        bus.subscribe("a", lambda uid, r: None)
        bus.subscribe("a", lambda uid, r: None)
        bus.subscribe("b", lambda uid, r: None)
        assert bus.subscriber_count() == 3
        bus.clear("a")
        assert bus.subscriber_count() == 1
        bus.clear()
        assert bus.subscriber_count() == 0


class TestDelivery:
    """Tests for isolation, ordering and weak references."""

    def test_failing_callback_isolated(self):
        """Test one raising listener does not stop the others."""
        bus = SubscriptionBus()
        got = []

        def broken(uid, r):
            raise RuntimeError("tile crashed")

        bus.subscribe("a", broken)
        bus.subscribe("a", lambda uid, r: got.append(r))

        assert bus.publish("a", report()) == 1
        assert len(got) == 1

    def test_unsubscribe_during_delivery(self):
        """Test removing a listener from inside a callback is safe."""
        bus = SubscriptionBus()
        got = []
        handles = {}

        def first(uid, r):
            handles["second"]()

        bus.subscribe("a", first)
        handles["second"] = bus.subscribe("a", lambda uid, r: got.append(r))

        bus.publish("a", report())
        assert len(got) == 1
        bus.publish("a", report())
        assert len(got) == 1

    def test_out_of_order_sequence_dropped(self):
        """Test a publish whose sequence is not above the last delivered one is dropped."""
        bus = SubscriptionBus()
        got = []
        bus.subscribe("a", lambda uid, r: got.append(r))

        newer, older = report(0.9), report(0.5)

        assert bus.publish("a", newer, 2) == 1
        assert bus.publish("a", older, 1) == 0
        assert bus.publish("a", older, 2) == 0
        assert got == [newer]

    def test_ordering_ignores_report_timestamps(self):
        """Test engine-supplied timestamps, naive or older, do not affect delivery."""
        bus = SubscriptionBus()
        got = []
        bus.subscribe("a", lambda uid, r: got.append(r.data))

        first = Report(success=True, confidence=0.9, data="naive", timestamp=datetime.now())
        second = Report.ok("aware", confidence=0.9)
        third = Report(success=True, confidence=0.9, data="as-of", timestamp=second.timestamp - timedelta(hours=1))

        for sequence, rep in enumerate((first, second, third), start=1):
            assert bus.publish("a", rep, sequence) == 1
        assert got == ["naive", "aware", "as-of"]

    def test_unsequenced_publishes_delivered_in_call_order(self):
        bus = SubscriptionBus()
        got = []
        bus.subscribe("a", lambda uid, r: got.append(r.confidence))

        bus.publish("a", report(0.9))
        bus.publish("a", report(0.5))

        assert got == [0.9, 0.5]

    def test_bound_method_held_weakly(self):
        """Test a collected subscriber silently drops out."""
        bus = SubscriptionBus()
        tile = Tile()
        bus.subscribe("a", tile.on_report)

        bus.publish("a", report())
        assert len(tile.received) == 1

        del tile
        gc.collect()
        assert bus.publish("a", report()) == 0
        assert bus.subscriber_count("a") == 0

    def test_deliveries_for_one_unit_do_not_overlap(self):
        """Test concurrent publishes for the same unit are serialised."""
        bus = SubscriptionBus()
        active = []
        overlaps = []
        lock = threading.Lock()

        def slow(uid, r):
            with lock:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(1)
            threading.Event().wait(0.01)
            with lock:
                active.pop()

        bus.subscribe("a", slow)
        threads = [threading.Thread(target=bus.publish, args=("a", report())) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(2)

        assert overlaps == []

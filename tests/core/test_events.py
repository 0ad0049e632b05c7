"""Tests for lifecycle events and the in-memory event bus."""

from unittest.mock import MagicMock

from tilespine.core.events import EventBus, Event
from tilespine.core.events.memory import InMemoryEventBus


class TestEvent:
    """Tests for Event pattern matching."""

    def test_exact_match(self):
        """Test an exact pattern matches only its type."""
        event = Event(event_type="run:start", source="test")
        assert event.matches("run:start")
        assert not event.matches("run:complete")

    def test_wildcards(self):
        """Test ``*`` and ``prefix:*`` patterns."""
        event = Event(event_type="unit:degraded", source="test")
        assert event.matches("*")
        assert event.matches("unit:*")
        assert not event.matches("run:*")
        assert not Event(event_type="units:x", source="t").matches("unit:*")

    def test_ids_are_unique(self):
        """Test each event gets its own id."""
        assert Event(event_type="a", source="t").event_id != Event(event_type="a", source="t").event_id


class TestInMemoryEventBus:
    """Tests for InMemoryEventBus."""

    def test_satisfies_protocol(self):
        """Test the bus implements the EventBus protocol."""
        assert isinstance(InMemoryEventBus(), EventBus)

    def test_publish_to_matching_subscribers(self):
        """Test only matching handlers are called."""
        bus = InMemoryEventBus()
        units = MagicMock()
        runs = MagicMock()
        bus.subscribe("unit:*", units)
        bus.subscribe("run:*", runs)

        event = Event(event_type="unit:success", source="wrapper", payload={"unit_id": "x"})
        bus.publish(event)

        units.assert_called_once_with(event)
        runs.assert_not_called()

    def test_handler_error_isolated(self):
        """Test a raising handler does not stop delivery to others."""
        bus = InMemoryEventBus()
        bad = MagicMock(side_effect=RuntimeError("boom"))
        good = MagicMock()
        bus.subscribe("*", bad)
        bus.subscribe("*", good)

        bus.publish(Event(event_type="run:start", source="t"))

        bad.assert_called_once()
        good.assert_called_once()

    def test_unsubscribe(self):
        """Test unsubscribed handlers stop receiving and unknown ids are ignored."""
        bus = InMemoryEventBus()
        handler = MagicMock()
        sub_id = bus.subscribe("*", handler)
        assert bus.subscription_count == 1

        bus.unsubscribe(sub_id)
        bus.unsubscribe(sub_id)
        bus.unsubscribe("sub_unknown")
        bus.publish(Event(event_type="run:start", source="t"))

        handler.assert_not_called()
        assert bus.subscription_count == 0

    def test_close_stops_delivery(self):
        """Test a closed bus drops events."""
        bus = InMemoryEventBus()
        handler = MagicMock()
        bus.subscribe("*", handler)
        bus.close()
        bus.publish(Event(event_type="run:start", source="t"))
        handler.assert_not_called()

    def test_recent_history(self):
        """Test recent() filters the bounded history and keeps publish order."""
        bus = InMemoryEventBus(history_size=3)
        for event_type in ("run:start", "unit:start", "unit:success", "run:complete"):
            bus.publish(Event(event_type=event_type, source="t"))

        assert [e.event_type for e in bus.recent()] == ["unit:start", "unit:success", "run:complete"]
        assert [e.event_type for e in bus.recent("unit:*")] == ["unit:start", "unit:success"]
        assert [e.event_type for e in bus.recent("unit:*", limit=1)] == ["unit:success"]

"""
Tests for the subscriber registry.

These tests verify the fan-out mechanism that lets UI surfaces react to
order changes without knowing about each other.
"""

import pytest

from order_sync.registry import SubscriberRegistry


class TestSubscribe:
    """Tests for subscribe and publish."""

    def test_subscribe_and_publish(self, registry: SubscriberRegistry, make_order):
        """Test basic subscribe and publish flow."""
        received = []
        registry.subscribe(received.append)

        order = make_order()
        assert registry.publish(order) == 1

        assert received == [order]

    def test_multiple_subscribers_in_registration_order(self, registry, make_order):
        calls = []
        registry.subscribe(lambda order: calls.append("first"))
        registry.subscribe(lambda order: calls.append("second"))

        registry.publish(make_order())

        assert calls == ["first", "second"]

    def test_predicate_filters(self, registry, make_order):
        """Test that a listener only sees the orders its predicate accepts."""
        mine = []
        registry.subscribe(mine.append, predicate=lambda order: order.owner_ref == "user-1")

        registry.publish(make_order("ORD-1", owner_ref="user-1"))
        registry.publish(make_order("ORD-2", owner_ref="user-2"))

        assert [order.order_number for order in mine] == ["ORD-1"]

    def test_rejects_non_callable(self, registry):
        with pytest.raises(TypeError):
            registry.subscribe("not a function")

    def test_no_subscribers(self, registry, make_order):
        assert registry.publish(make_order()) == 0


class TestUnsubscribe:
    """Tests for removing registrations."""

    def test_unsubscribe(self, registry, make_order):
        received = []
        unsubscribe = registry.subscribe(received.append)

        assert unsubscribe() is True
        registry.publish(make_order())

        assert received == []
        assert len(registry) == 0

    def test_unsubscribe_twice_is_harmless(self, registry):
        unsubscribe = registry.subscribe(lambda order: None)
        assert unsubscribe() is True
        assert unsubscribe() is False

    def test_unsubscribe_self_during_dispatch(self, registry, make_order):
        """Test that a listener removing itself mid-dispatch is safe and never called again."""
        calls = []
        others = []

        def once(order):
            calls.append(order.order_number)
            unsubscribe()

        unsubscribe = registry.subscribe(once)
        registry.subscribe(lambda order: others.append(order.order_number))

        registry.publish(make_order("ORD-1"))
        registry.publish(make_order("ORD-2"))

        assert calls == ["ORD-1"]
        assert others == ["ORD-1", "ORD-2"]

    def test_unsubscribe_other_during_dispatch(self, registry, make_order):
        """Test that a listener removed by an earlier one in the same dispatch is skipped."""
        calls = []

        def remover(order):
            calls.append("remover")
            remove_victim()

        registry.subscribe(remover)
        remove_victim = registry.subscribe(lambda order: calls.append("victim"))

        registry.publish(make_order())

        assert calls == ["remover"]

    def test_subscribe_during_dispatch_waits_for_next_event(self, registry, make_order):
        late = []

        def adder(order):
            registry.subscribe(late.append)

        registry.subscribe(adder)
        registry.publish(make_order("ORD-1"))

        assert late == []


class TestErrorIsolation:
    """Tests that one faulty listener doesn't affect others."""

    def test_raising_listener_does_not_stop_dispatch(self, registry, make_order, caplog):
        received = []

        def broken(order):
            raise RuntimeError("boom")

        registry.subscribe(broken)
        registry.subscribe(received.append)

        with caplog.at_level("ERROR", logger="subscriber_registry"):
            registry.publish(make_order())

        assert len(received) == 1
        assert "boom" in caplog.text

    def test_clear(self, registry):
        registry.subscribe(lambda order: None)
        registry.subscribe(lambda order: None)

        registry.clear()

        assert len(registry) == 0

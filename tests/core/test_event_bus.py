"""Tests for EventBus."""

import logging

import pytest

from core.event_bus import EventBus
from core.events import OrderPlaced, OrderCancelled, InvoicePaid


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, make_order):
        bus = EventBus()
        received = []
        bus.subscribe("OrderPlaced", received.append)

        event = OrderPlaced.create(order=make_order())
        bus.publish(event)

        assert len(received) == 1
        assert received[0] is event

    def test_handler_can_read_payload_fields(self, make_order):
        bus = EventBus()
        numbers = []
        bus.subscribe("OrderPlaced", lambda e: numbers.append(e.order.order_number))

        order = make_order(order_number="ORD-20250314-000777")
        bus.publish(OrderPlaced.create(order=order))

        assert numbers == ["ORD-20250314-000777"]

    def test_multiple_handlers_called_in_subscription_order(self, make_order):
        bus = EventBus()
        calls = []
        bus.subscribe("OrderPlaced", lambda e: calls.append("invoice"))
        bus.subscribe("OrderPlaced", lambda e: calls.append("analytics"))

        bus.publish(OrderPlaced.create(order=make_order()))

        assert calls == ["invoice", "analytics"]

    def test_type_isolation_only_matching_subscribers_called(self, make_order):
        bus = EventBus()
        placed = []
        cancelled = []
        bus.subscribe("OrderPlaced", placed.append)
        bus.subscribe("OrderCancelled", cancelled.append)

        bus.publish(OrderPlaced.create(order=make_order()))

        assert len(placed) == 1
        assert cancelled == []

    def test_no_subscribers_does_not_raise(self, make_invoice):
        EventBus().publish(InvoicePaid.create(invoice=make_invoice()))


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_does_not_propagate(self, make_order):
        bus = EventBus()

        def failing_handler(event):
            raise RuntimeError("boom")

        bus.subscribe("OrderCancelled", failing_handler)

        bus.publish(OrderCancelled.create(order=make_order(), reason="changed mind"))

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, make_order, caplog):
        bus = EventBus()

        def generate_invoice(event):
            raise ValueError("invoice numbering failed")

        bus.subscribe("OrderPlaced", generate_invoice)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = OrderPlaced.create(order=make_order())
            bus.publish(event)

        assert "invoice numbering failed" in caplog.text
        assert "generate_invoice" in caplog.text
        assert "OrderPlaced" in caplog.text
        assert event.event_id in caplog.text

    def test_second_handler_runs_after_first_handler_raises(self, make_order):
        bus = EventBus()
        survivors = []

        def failing_handler(event):
            raise RuntimeError("fail")

        bus.subscribe("OrderPlaced", failing_handler)
        bus.subscribe("OrderPlaced", lambda e: survivors.append(e.order.id))

        order = make_order()
        bus.publish(OrderPlaced.create(order=order))

        assert survivors == [order.id]


# =============================================================================
# SUBSCRIPTION KEYS AND DELIVERY COUNT
# =============================================================================


class TestSubscriptionKeys:

    def test_subscribe_by_class_and_by_name_share_a_key(self, make_order):
        bus = EventBus()
        calls = []
        bus.subscribe(OrderPlaced, lambda e: calls.append("class"))
        bus.subscribe("OrderPlaced", lambda e: calls.append("name"))

        bus.publish(OrderPlaced.create(order=make_order()))

        assert calls == ["class", "name"]

    def test_publish_returns_successful_handler_count(self, make_order):
        bus = EventBus()

        def failing_handler(event):
            raise RuntimeError("fail")

        bus.subscribe(OrderCancelled, failing_handler)
        bus.subscribe(OrderCancelled, lambda e: None)

        assert bus.publish(OrderCancelled.create(order=make_order(), reason="")) == 1

    def test_publish_without_subscribers_returns_zero(self, make_invoice):
        assert EventBus().publish(InvoicePaid.create(invoice=make_invoice())) == 0

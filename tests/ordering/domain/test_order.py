"""Tests for the Order aggregate: creation rules, event-log fold and state machine."""

import re
from datetime import datetime

import pytest
from ordering.order.order import (
    Order,
    OrderEventKind,
    OrderStatus,
    PaymentStatus,
    fold,
    generate_order_number,
)
from protean.exceptions import ValidationError
from shared.errors import InvalidTransition

ITEMS = [
    {"product_id": "prod-milk", "name": "Whole milk", "size": "1L", "quantity": 2, "unit_price_cents": 1900},
]


def _make_order(paid=True, **overrides):
    values = {
        "order_number": "DST-20240304-A1B2C3",
        "payment_intent_id": "pi_test_001",
        "customer_id": "cust-001",
        "address_id": "addr-001",
        "basket_id": "basket-001",
        "items_data": ITEMS,
        "subtotal_cents": 3800,
        "delivery_fee_cents": 399,
        "total_cents": 4199,
        "currency": "eur",
        "eta_band": "16:00-17:00",
        "paid": paid,
    }
    values.update(overrides)
    return Order.create(**values)


class TestOrderCreation:
    def test_paid_order_starts_confirmed(self):
        order = _make_order()
        assert order.order_status is OrderStatus.CONFIRMED
        assert order.order_payment_status is PaymentStatus.PAID
        assert order.event_kinds() == [OrderEventKind.CONFIRMED]
        assert order.history()[0].detail_map["payment_intent_id"] == "pi_test_001"

    def test_unpaid_order_is_pending(self):
        order = _make_order(paid=False)
        assert order.order_status is OrderStatus.CONFIRMED
        assert order.order_payment_status is PaymentStatus.PENDING
        assert order.events == []

    def test_items_are_copied(self):
        order = _make_order()
        assert len(order.items) == 1
        assert order.items[0].line_total_cents == 3800

    def test_total_must_add_up(self):
        with pytest.raises(ValidationError):
            _make_order(total_cents=4000)

    def test_subtotal_must_match_items(self):
        with pytest.raises(ValidationError):
            _make_order(subtotal_cents=3000, total_cents=3399)

    def test_items_required(self):
        with pytest.raises(ValidationError):
            _make_order(items_data=[], subtotal_cents=0, delivery_fee_cents=0, total_cents=0)


class TestFold:
    def test_empty_log(self):
        assert fold([]) == (OrderStatus.CONFIRMED, PaymentStatus.PENDING)

    def test_happy_path(self):
        kinds = [
            OrderEventKind.CONFIRMED,
            OrderEventKind.PREPARING,
            OrderEventKind.OUT_FOR_DELIVERY,
            OrderEventKind.DELIVERED,
        ]
        assert fold(kinds) == (OrderStatus.DELIVERED, PaymentStatus.PAID)

    def test_payment_failure_cancels(self):
        assert fold([OrderEventKind.PAYMENT_FAILED]) == (OrderStatus.CANCELLED, PaymentStatus.FAILED)
        assert fold([OrderEventKind.PAYMENT_CANCELED]) == (OrderStatus.CANCELLED, PaymentStatus.FAILED)

    def test_dispute_is_informational(self):
        kinds = [OrderEventKind.CONFIRMED, OrderEventKind.PREPARING, OrderEventKind.DISPUTE_CREATED]
        assert fold(kinds) == (OrderStatus.PREPARING, PaymentStatus.PAID)

    def test_cached_status_matches_fold(self):
        order = _make_order()
        order.transition_to(OrderStatus.PREPARING)
        order.record(OrderEventKind.DISPUTE_CREATED, {"dispute_id": "dp_1"})
        status, payment = fold(order.event_kinds())
        assert order.status == status.value
        assert order.payment_status == payment.value


class TestTransitions:
    def test_forward_path(self):
        order = _make_order()
        order.transition_to(OrderStatus.PREPARING)
        order.transition_to(OrderStatus.OUT_FOR_DELIVERY)
        order.transition_to(OrderStatus.DELIVERED, {"signed_by": "neighbour"})
        assert order.order_status is OrderStatus.DELIVERED
        assert order.is_terminal is True
        assert order.history()[-1].detail_map == {"signed_by": "neighbour"}

    def test_cannot_skip_steps(self):
        with pytest.raises(InvalidTransition):
            _make_order().transition_to(OrderStatus.DELIVERED)

    @pytest.mark.parametrize("steps", [[], [OrderStatus.PREPARING], [OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY]])
    def test_cancel_from_non_terminal(self, steps):
        order = _make_order()
        for step in steps:
            order.transition_to(step)
        order.transition_to(OrderStatus.CANCELLED, {"reason": "customer request"})
        assert order.order_status is OrderStatus.CANCELLED
        assert order.order_payment_status is PaymentStatus.PAID

    def test_terminal_states_are_final(self):
        order = _make_order()
        order.transition_to(OrderStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            order.transition_to(OrderStatus.PREPARING)

    def test_invalid_transition_is_409(self):
        with pytest.raises(InvalidTransition) as exc:
            _make_order().transition_to(OrderStatus.OUT_FOR_DELIVERY)
        assert exc.value.status_code == 409


class TestPaymentFailure:
    def test_unpaid_order_is_cancelled(self):
        order = _make_order(paid=False)
        order.fail_payment(OrderEventKind.PAYMENT_FAILED, {"failure_code": "card_declined"})
        assert order.order_status is OrderStatus.CANCELLED
        assert order.order_payment_status is PaymentStatus.FAILED

    def test_paid_order_refuses_provider_failure(self):
        order = _make_order()
        with pytest.raises(InvalidTransition):
            order.fail_payment(OrderEventKind.PAYMENT_FAILED)
        assert order.order_payment_status is PaymentStatus.PAID
        assert order.event_kinds() == [OrderEventKind.CONFIRMED]

    def test_only_failure_kinds_accepted(self):
        with pytest.raises(ValidationError):
            _make_order(paid=False).fail_payment(OrderEventKind.DELIVERED)


class TestTracking:
    def test_timeline_marks_reached_steps(self):
        order = _make_order()
        order.transition_to(OrderStatus.PREPARING)
        timeline = order.tracking_timeline()
        assert [step["status"] for step in timeline] == ["CONFIRMED", "PREPARING", "OUT_FOR_DELIVERY", "DELIVERED"]
        assert [step["completed"] for step in timeline] == [True, True, False, False]
        assert timeline[2]["label"] == "Out For Delivery"
        assert timeline[3]["timestamp"] is None


class TestOrderNumber:
    def test_format(self):
        number = generate_order_number("DST", datetime(2024, 3, 4, 10, 0))
        assert re.fullmatch(r"DST-20240304-[0-9A-F]{6}", number)

    def test_numbers_differ(self):
        assert len({generate_order_number("DST") for _ in range(20)}) > 1

"""Tests for turning a succeeded payment intent into exactly one Order."""

import threading
from dataclasses import replace
from unittest import mock

import pytest
from inventory.domain import inventory
from inventory.stock.adjustment import SetAvailability
from ordering.basket import management
from ordering.basket.basket import BasketOwner
from ordering.checkout.snapshot import CheckoutSnapshot, find_snapshot
from ordering.order import materialization
from ordering.order.materialization import find_order, materialize
from ordering.order.order import Order, OrderStatus, PaymentStatus
from payments.refund import find_refund, refund_unfulfillable
from protean import current_domain
from shared.errors import PaymentNotSucceeded, UnfulfillableOrder

CUSTOMER = BasketOwner(customer_id="cust-001")
OTHER = BasketOwner(customer_id="cust-002")


def _order_count():
    return current_domain.repository_for(Order)._dao.query.all().total


def _switch_off(product_id):
    with inventory.domain_context():
        inventory.process(SetAvailability(product_id=product_id, is_available=False), asynchronous=False)


class TestMaterialize:
    def test_order_matches_checkout(self, gateway, checkout):
        intent = checkout(quantity=2)
        order = materialize(intent.payment_intent_id)
        assert order.payment_intent_id == intent.payment_intent_id
        assert order.order_status is OrderStatus.CONFIRMED
        assert order.order_payment_status is PaymentStatus.PAID
        assert order.subtotal_cents == 3800
        assert order.delivery_fee_cents == 399
        assert order.total_cents == 4199 == gateway.intents[intent.payment_intent_id].amount
        assert order.order_number.startswith("DST-")
        assert [(item.name, item.quantity) for item in order.items] == [("Whole milk", 2)]

    def test_basket_is_emptied_and_stock_stays_sold(self, checkout, product, stock):
        intent = checkout(quantity=2)
        materialize(intent.payment_intent_id)
        assert management.view_basket(CUSTOMER).is_empty
        assert stock(product) == (8, 10)

    def test_repeated_calls_return_same_order(self, checkout, product, stock):
        intent = checkout(quantity=2)
        first = materialize(intent.payment_intent_id)
        second = materialize(intent.payment_intent_id)
        assert first.id == second.id
        assert _order_count() == 1
        assert stock(product)[0] == 8

    def test_payment_not_succeeded(self, checkout):
        intent = checkout(succeed=False)
        with pytest.raises(PaymentNotSucceeded) as exc:
            materialize(intent.payment_intent_id)
        assert exc.value.status == "requires_payment_method"
        assert _order_count() == 0

    def test_basket_edited_after_checkout_keeps_paid_lines(self, checkout, product, stock):
        intent = checkout(quantity=2)
        basket = management.view_basket(CUSTOMER)
        management.set_line_quantity(CUSTOMER, str(basket.lines[0].id), 5)
        order = materialize(intent.payment_intent_id)
        assert order.items[0].quantity == 2
        assert order.total_cents == 4199
        # the three extra units go back to stock with the basket
        assert stock(product)[0] == 8

    def test_emptied_basket_is_reserved_again(self, checkout, product, stock):
        intent = checkout(quantity=2)
        management.clear_basket(CUSTOMER)
        assert stock(product)[0] == 10
        order = materialize(intent.payment_intent_id)
        assert order.items[0].quantity == 2
        assert stock(product)[0] == 8


class TestLostInsertRace:
    def test_duplicate_insert_returns_committed_order(self, checkout, product, stock):
        intent = checkout(quantity=2)
        winner = materialize(intent.payment_intent_id)
        lookups = [None]

        def stale_then_fresh(payment_intent_id):
            # The first lookup runs before the winner's commit becomes visible
            if lookups:
                return lookups.pop()
            return find_order(payment_intent_id)

        with (
            mock.patch.object(materialization, "find_order", side_effect=stale_then_fresh),
            mock.patch.object(materialization, "logger") as logger,
        ):
            loser = materialize(intent.payment_intent_id)

        assert str(loser.id) == str(winner.id)
        assert _order_count() == 1
        assert stock(product) == (8, 10)
        logger.info.assert_any_call(
            "order_materialization_race_lost",
            payment_intent_id=intent.payment_intent_id,
            order_id=str(winner.id),
        )


class TestUnfulfillable:
    def test_stock_gone_after_payment(self, checkout, make_product, stock):
        product_id = make_product(stock=2)
        intent = checkout(quantity=2, product_id=product_id)
        management.clear_basket(CUSTOMER)
        management.add_line(OTHER, product_id, 2)

        with pytest.raises(UnfulfillableOrder) as exc:
            materialize(intent.payment_intent_id)
        assert exc.value.reason == "stock_unavailable"
        assert exc.value.shortfalls[0]["reason"] == "insufficient_stock"
        assert exc.value.shortfalls[0]["available"] == 0
        assert _order_count() == 0
        assert stock(product_id)[0] == 0

    def test_product_switched_off_after_payment(self, checkout, product, stock):
        intent = checkout(quantity=2)
        _switch_off(product)
        with pytest.raises(UnfulfillableOrder) as exc:
            materialize(intent.payment_intent_id)
        assert exc.value.shortfalls == [{"product_id": product, "name": "Whole milk", "reason": "out_of_stock"}]
        # the basket keeps its reservation
        assert stock(product)[0] == 8

    def test_amount_mismatch(self, checkout):
        intent = checkout(quantity=2)
        repo = current_domain.repository_for(CheckoutSnapshot)
        snapshot = find_snapshot(intent.payment_intent_id)
        snapshot.total_cents = 1
        repo.add(snapshot)
        with pytest.raises(UnfulfillableOrder) as exc:
            materialize(intent.payment_intent_id)
        assert exc.value.reason == "amount_mismatch"
        assert _order_count() == 0

    def test_metadata_mismatch(self, gateway, checkout):
        intent = checkout(quantity=2)
        paid = gateway.intents[intent.payment_intent_id]
        gateway.intents[intent.payment_intent_id] = replace(paid, metadata={**paid.metadata, "customerId": "cust-999"})
        with pytest.raises(UnfulfillableOrder) as exc:
            materialize(intent.payment_intent_id)
        assert exc.value.reason == "metadata_mismatch"

    def test_refund_blocks_later_materialization(self, checkout, make_product):
        product_id = make_product(stock=2)
        intent = checkout(quantity=2, product_id=product_id)
        management.clear_basket(CUSTOMER)
        management.add_line(OTHER, product_id, 2)
        with pytest.raises(UnfulfillableOrder) as exc:
            materialize(intent.payment_intent_id)
        refund_unfulfillable(exc.value)
        assert find_refund(intent.payment_intent_id).status == "succeeded"

        # stock comes back, but the payment is already being refunded
        management.clear_basket(OTHER)
        with pytest.raises(UnfulfillableOrder) as retry:
            materialize(intent.payment_intent_id)
        assert retry.value.reason == "refund_requested"
        assert _order_count() == 0


class TestConcurrentMaterialization:
    def test_parallel_callers_share_one_order(self, checkout, product, stock):
        intent = checkout(quantity=2)
        barrier = threading.Barrier(4)
        order_ids = []
        errors = []

        def attempt():
            barrier.wait()
            try:
                order_ids.append(str(materialize(intent.payment_intent_id).id))
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(set(order_ids)) == 1
        assert len(order_ids) == 4
        assert _order_count() == 1
        assert stock(product)[0] == 8

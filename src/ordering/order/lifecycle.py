"""Order lifecycle: operator status updates, customer cancellation and
provider-driven payment events.

Every change is one unit of work that claims the order row, appends the
order event, refreshes the cached status and moves stock: a cancellation
returns the order's units, a delivery retires them from capacity. Claiming
first makes concurrent writers of one order apply one after the other, so a
second cancellation finds a terminal order and releases nothing.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from inventory.stock import ledger
from ordering.domain import ordering
from ordering.order.materialization import find_order
from ordering.order.order import Order, OrderEventKind, OrderStatus, PaymentStatus
from payments.refund import request_refund
from shared.db import claim_row, uow_session

logger = structlog.get_logger(__name__)

ANOMALY = "anomaly"
ALREADY_CANCELLED = "already_cancelled"
ORDER_CANCELLED = "order_cancelled"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@ordering.command(part_of="Order")
class AdvanceOrder:
    order_id = Identifier(required=True)
    status = String(required=True, choices=OrderStatus)
    details = Text()  # JSON


@ordering.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    customer_id = Identifier()  # Absent for operator cancellations
    reason = String(max_length=200)


@ordering.command(part_of="Order")
class FailOrderPayment:
    order_id = Identifier(required=True)
    kind = String(required=True, choices=OrderEventKind)
    details = Text()


@ordering.command(part_of="Order")
class RecordDispute:
    order_id = Identifier(required=True)
    event_id = String(required=True, max_length=255)
    details = Text()


def _not_found(order_id) -> ObjectNotFoundError:
    return ObjectNotFoundError({"order_id": [f"Order {order_id} not found"]})


def claim_order(session, order_id) -> Order:
    if not claim_row(session, "orders", order_id):
        raise _not_found(order_id)
    return current_domain.repository_for(Order).get(order_id)


def release_order_stock(session, order: Order) -> None:
    for item in order.items:
        ledger.release(session, str(item.product_id), item.quantity)


def _details(command) -> dict:
    return json.loads(command.details) if command.details else {}


@ordering.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(AdvanceOrder)
    def advance_order(self, command):
        session = uow_session()
        order = claim_order(session, command.order_id)
        target = OrderStatus(command.status)
        previous = order.order_status

        order.transition_to(target, _details(command))
        if target is OrderStatus.CANCELLED:
            release_order_stock(session, order)
        elif target is OrderStatus.DELIVERED:
            for item in order.items:
                ledger.deliver(session, str(item.product_id), item.quantity)

        current_domain.repository_for(Order).add(order)
        logger.info("order_status_changed", order_id=str(order.id), previous=previous.value, status=target.value)
        return str(order.id)

    @handle(CancelOrder)
    def cancel_order(self, command):
        session = uow_session()
        order = claim_order(session, command.order_id)
        if command.customer_id and str(order.customer_id) != str(command.customer_id):
            raise _not_found(command.order_id)

        order.transition_to(
            OrderStatus.CANCELLED,
            {"reason": command.reason or "cancelled", "by": command.customer_id or "operator"},
        )
        release_order_stock(session, order)
        current_domain.repository_for(Order).add(order)
        return str(order.id)

    @handle(FailOrderPayment)
    def fail_order_payment(self, command):
        """Cancel an unpaid order after the provider reported failure or cancellation.

        Returns the outcome for the payment event record.
        """
        session = uow_session()
        order = claim_order(session, command.order_id)
        kind = OrderEventKind(command.kind)

        if order.order_payment_status is PaymentStatus.PAID:
            logger.error(
                "payment_failure_for_paid_order",
                order_id=str(order.id),
                payment_intent_id=order.payment_intent_id,
                kind=kind.value,
            )
            return ANOMALY
        if order.is_terminal:
            return ALREADY_CANCELLED

        order.fail_payment(kind, _details(command))
        release_order_stock(session, order)
        current_domain.repository_for(Order).add(order)
        logger.info("order_payment_failed", order_id=str(order.id), kind=kind.value)
        return ORDER_CANCELLED

    @handle(RecordDispute)
    def record_dispute(self, command):
        order = claim_order(uow_session(), command.order_id)
        # Redelivered provider events leave the log as it is
        if not order.has_provider_event(command.event_id):
            order.record(OrderEventKind.DISPUTE_CREATED, {**_details(command), "event_id": command.event_id})
            current_domain.repository_for(Order).add(order)
        return str(order.id)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def get_order(order_id: str, customer_id: str | None = None) -> Order:
    """Load an order; when ``customer_id`` is given, only that customer's."""
    with ordering.domain_context():
        order = current_domain.repository_for(Order).get(order_id)
    if customer_id is not None and str(order.customer_id) != str(customer_id):
        raise _not_found(order_id)
    return order


def advance_order(order_id: str, target: OrderStatus, details: dict | None = None) -> Order:
    """Move an order one step along its lifecycle (operator action)."""
    command = AdvanceOrder(order_id=order_id, status=target.value, details=json.dumps(details or {}))
    with ordering.domain_context():
        current_domain.process(command, asynchronous=False)
    return get_order(order_id)


def cancel_order(order_id: str, customer_id: str | None = None, reason: str | None = None) -> Order:
    """Cancel an order, return its stock and refund it if it was paid."""
    with ordering.domain_context():
        current_domain.process(
            CancelOrder(order_id=order_id, customer_id=customer_id, reason=reason),
            asynchronous=False,
        )
    order = get_order(order_id)

    logger.info("order_cancelled", order_id=order_id, reason=reason)
    if order.order_payment_status is PaymentStatus.PAID:
        request_refund(
            order.payment_intent_id,
            reason="order_cancelled",
            amount_cents=order.total_cents,
            order_id=str(order.id),
        )
    return order


def fail_order_payment(payment_intent_id: str, kind: OrderEventKind, details: dict) -> tuple[str | None, str | None]:
    """Apply a provider failure to the intent's order, if there is one.

    Returns ``(outcome, order_id)``; both are None when no order exists.
    """
    order = find_order(payment_intent_id)
    if order is None:
        return None, None
    command = FailOrderPayment(order_id=str(order.id), kind=kind.value, details=json.dumps(details))
    with ordering.domain_context():
        outcome = current_domain.process(command, asynchronous=False)
    return outcome, str(order.id)


def record_dispute(payment_intent_id: str, event_id: str, details: dict) -> str | None:
    order = find_order(payment_intent_id)
    if order is None:
        return None
    command = RecordDispute(order_id=str(order.id), event_id=event_id, details=json.dumps(details))
    with ordering.domain_context():
        return current_domain.process(command, asynchronous=False)

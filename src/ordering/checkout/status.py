"""Where a checkout stands, as shown to the customer while they wait."""

from dataclasses import dataclass

from protean.exceptions import ObjectNotFoundError

from ordering.checkout.snapshot import CheckoutSnapshot, find_snapshot
from ordering.order.materialization import find_order
from ordering.order.order import PaymentStatus
from payments.gateway import get_gateway
from payments.gateway.port import CANCELED
from payments.refund import find_refund

PENDING = "pending"
CONFIRMED = "confirmed"
REFUND_IN_PROGRESS = "refund_in_progress"
FAILED = "failed"


@dataclass(frozen=True)
class CheckoutState:
    payment_intent_id: str
    state: str
    order_id: str | None = None
    order_number: str | None = None
    message: str | None = None


def owned_snapshot(payment_intent_id: str, customer_id: str) -> CheckoutSnapshot:
    """The customer's checkout for this intent; someone else's reads as missing."""
    snapshot = find_snapshot(payment_intent_id)
    if snapshot is None or str(snapshot.customer_id) != str(customer_id):
        raise ObjectNotFoundError({"payment_intent_id": [f"Checkout {payment_intent_id} not found"]})
    return snapshot


def checkout_state(payment_intent_id: str, customer_id: str) -> CheckoutState:
    owned_snapshot(payment_intent_id, customer_id)
    order = find_order(payment_intent_id)

    if order is not None:
        state = FAILED if order.payment_status == PaymentStatus.FAILED.value else CONFIRMED
        return CheckoutState(payment_intent_id, state, order_id=str(order.id), order_number=order.order_number)
    if find_refund(payment_intent_id) is not None:
        return CheckoutState(
            payment_intent_id,
            REFUND_IN_PROGRESS,
            message="Order could not be completed, refund in progress",
        )

    intent = get_gateway().retrieve_payment_intent(payment_intent_id)
    if intent.status == CANCELED or intent.last_payment_error:
        return CheckoutState(payment_intent_id, FAILED, message=intent.last_payment_error or "Payment was canceled")
    return CheckoutState(payment_intent_id, PENDING)

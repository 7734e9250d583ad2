"""Order materialization: paid checkout → Order, exactly once.

Both the client's confirmation call and the provider's ``succeeded`` webhook
end up here, in any order, any number of times, possibly at the same
moment. The unique key on the order's ``payment_intent_id`` is what makes
that safe: the Order is inserted before anything else in the unit of work,
so a concurrent loser fails on that insert, rolls back all of its work and
returns the winner's order.
"""

import json

import structlog
from protean import handle
from protean.fields import Integer, String, Text
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError

from inventory.stock import ledger
from ordering.basket.basket import Basket
from ordering.checkout.snapshot import CheckoutSnapshot, get_snapshot
from ordering.domain import ordering
from ordering.order.order import Order, generate_order_number
from payments.gateway import get_gateway
from payments.refund import refund_requested
from shared.config import get_settings
from shared.db import claim_row, uow_session
from shared.errors import (
    ConcurrentModification,
    DuplicateOrder,
    InsufficientStock,
    PaymentNotSucceeded,
    UnfulfillableOrder,
)

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 3


@ordering.command(part_of="Order")
class MaterializeOrder:
    """Create the order for a payment the provider reports as succeeded."""

    payment_intent_id = String(required=True, max_length=255)
    order_number = String(required=True, max_length=40)
    amount_cents = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    metadata = Text(required=True)  # JSON, as attached to the payment intent


@ordering.command_handler(part_of=Order)
class OrderMaterializationHandler:
    @handle(MaterializeOrder)
    def materialize_order(self, command):
        session = uow_session()
        metadata = json.loads(command.metadata)
        snapshot = get_snapshot(command.payment_intent_id)
        _check_consistency(command, metadata, snapshot)

        order = Order.create(
            order_number=command.order_number,
            payment_intent_id=command.payment_intent_id,
            customer_id=metadata["customerId"],
            address_id=metadata["addressId"],
            basket_id=metadata["basketId"],
            items_data=snapshot.line_items,
            subtotal_cents=snapshot.subtotal_cents,
            delivery_fee_cents=snapshot.delivery_fee_cents,
            total_cents=command.amount_cents,
            currency=command.currency,
            eta_band=snapshot.eta_band,
            substitution_allowed=metadata.get("substitutionAllowed") == "true",
            confirmation_details={"payment_intent_id": command.payment_intent_id, "amount": command.amount_cents},
        )
        current_domain.repository_for(Order).add(order)
        try:
            session.flush()
        except IntegrityError as error:
            raise DuplicateOrder(command.payment_intent_id) from error

        if refund_requested(session, command.payment_intent_id):
            raise UnfulfillableOrder(command.payment_intent_id, "refund_requested")
        _settle_stock(session, command.payment_intent_id, snapshot)
        return str(order.id)


def _check_consistency(command: MaterializeOrder, metadata: dict, snapshot: CheckoutSnapshot) -> None:
    if snapshot.total_cents != command.amount_cents:
        raise UnfulfillableOrder(command.payment_intent_id, "amount_mismatch")
    expected = {
        "basketId": str(snapshot.basket_id),
        "customerId": str(snapshot.customer_id),
        "addressId": str(snapshot.address_id),
    }
    if any(metadata.get(key) != value for key, value in expected.items()):
        raise UnfulfillableOrder(command.payment_intent_id, "metadata_mismatch")


def _settle_stock(session, payment_intent_id: str, snapshot: CheckoutSnapshot) -> None:
    """Turn the basket's reservation into the order's stock, then empty the basket.

    Units the order needs but the basket no longer holds are reserved again;
    units the basket holds beyond the order go back to stock.
    """
    repo = current_domain.repository_for(Basket)
    basket = repo.get(snapshot.basket_id) if claim_row(session, "baskets", snapshot.basket_id) else None
    held = {str(line.product_id): line.quantity for line in basket.lines} if basket is not None else {}

    shortfalls = []
    for line in snapshot.line_items:
        product_id, quantity = line["product_id"], line["quantity"]
        product = ledger.product_row(session, product_id)
        if product is None or not product.is_available:
            shortfalls.append({"product_id": product_id, "name": line["name"], "reason": "out_of_stock"})
            continue
        missing = quantity - held.get(product_id, 0)
        if missing <= 0:
            continue
        try:
            ledger.reserve(session, product_id, missing)
        except InsufficientStock as exc:
            shortfalls.append(
                {
                    "product_id": product_id,
                    "name": line["name"],
                    "reason": "insufficient_stock",
                    "requested": quantity,
                    "available": held.get(product_id, 0) + exc.available,
                }
            )
    if shortfalls:
        raise UnfulfillableOrder(payment_intent_id, "stock_unavailable", shortfalls)

    ordered = snapshot.quantities
    for product_id, quantity in held.items():
        excess = quantity - ordered.get(product_id, 0)
        if excess > 0:
            ledger.release(session, product_id, excess)

    if basket is not None:
        basket.clear()
        repo.add(basket)


def find_order(payment_intent_id: str) -> Order | None:
    with ordering.domain_context():
        repo = current_domain.repository_for(Order)
        found = repo._dao.query.filter(payment_intent_id=payment_intent_id).all().items
    return found[0] if found else None


def materialize(payment_intent_id: str) -> Order:
    """Return the Order for a succeeded payment intent, creating it if needed."""
    existing = find_order(payment_intent_id)
    if existing is not None:
        return existing

    intent = get_gateway().retrieve_payment_intent(payment_intent_id)
    if not intent.succeeded:
        raise PaymentNotSucceeded(payment_intent_id, intent.status)

    prefix = get_settings().order_number_prefix
    with ordering.domain_context():
        for attempt in range(1, MAX_ATTEMPTS + 1):
            command = MaterializeOrder(
                payment_intent_id=intent.id,
                order_number=generate_order_number(prefix),
                amount_cents=intent.amount,
                currency=intent.currency,
                metadata=json.dumps(intent.metadata),
            )
            try:
                order_id = current_domain.process(command, asynchronous=False)
            except DuplicateOrder:
                order = find_order(payment_intent_id)
                if order is None:
                    logger.warning("order_number_collision", order_number=command.order_number, attempt=attempt)
                    continue
                logger.info(
                    "order_materialization_race_lost",
                    payment_intent_id=payment_intent_id,
                    order_id=str(order.id),
                )
                return order

            order = current_domain.repository_for(Order).get(order_id)
            logger.info(
                "order_materialized",
                order_id=order_id,
                order_number=order.order_number,
                payment_intent_id=payment_intent_id,
                total=order.total_cents,
            )
            return order

    raise ConcurrentModification({"order": ["Could not create the order, retry the request"]})

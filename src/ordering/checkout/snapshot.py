"""Checkout snapshots: what was priced when a payment intent was created.

Written once per payment intent and never updated. The order materializer
builds order items and totals from it, so a basket edited after checkout
cannot change what the customer is charged for.
"""

import json
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError

from ordering.basket.basket import Basket
from ordering.domain import ordering
from shared.db import uow_session

logger = structlog.get_logger(__name__)


@ordering.aggregate(schema_name="checkout_snapshots")
class CheckoutSnapshot:
    payment_intent_id = String(required=True, max_length=255)
    basket_id = Identifier(required=True)
    basket_revision = Integer(required=True, min_value=0)
    customer_id = Identifier(required=True)
    address_id = Identifier(required=True)
    substitution_allowed = Boolean(default=False)
    # JSON: [{"product_id", "name", "size", "quantity", "unit_price_cents"}]
    lines = Text(required=True)
    subtotal_cents = Integer(required=True, min_value=0)
    delivery_fee_cents = Integer(required=True, min_value=0)
    total_cents = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    zone_name = String(required=True, max_length=120)
    eta_band = String(required=True, max_length=40)
    created_at = DateTime()

    @property
    def line_items(self) -> list[dict]:
        return json.loads(self.lines)

    @property
    def quantities(self) -> dict[str, int]:
        return {line["product_id"]: line["quantity"] for line in self.line_items}


@ordering.command(part_of="CheckoutSnapshot")
class RecordCheckoutSnapshot:
    payment_intent_id = String(required=True, max_length=255)
    basket_id = Identifier(required=True)
    basket_revision = Integer(required=True)
    customer_id = Identifier(required=True)
    address_id = Identifier(required=True)
    substitution_allowed = Boolean(default=False)
    lines = Text(required=True)
    subtotal_cents = Integer(required=True)
    delivery_fee_cents = Integer(required=True)
    total_cents = Integer(required=True)
    currency = String(required=True, max_length=3)
    zone_name = String(required=True, max_length=120)
    eta_band = String(required=True, max_length=40)


@ordering.command_handler(part_of=CheckoutSnapshot)
class CheckoutSnapshotHandler:
    @handle(RecordCheckoutSnapshot)
    def record_snapshot(self, command):
        snapshot = CheckoutSnapshot(
            payment_intent_id=command.payment_intent_id,
            basket_id=command.basket_id,
            basket_revision=command.basket_revision,
            customer_id=command.customer_id,
            address_id=command.address_id,
            substitution_allowed=command.substitution_allowed,
            lines=command.lines,
            subtotal_cents=command.subtotal_cents,
            delivery_fee_cents=command.delivery_fee_cents,
            total_cents=command.total_cents,
            currency=command.currency,
            zone_name=command.zone_name,
            eta_band=command.eta_band,
            created_at=datetime.now(UTC),
        )
        current_domain.repository_for(CheckoutSnapshot).add(snapshot)
        uow_session().flush()
        return str(snapshot.id)


def lines_from_basket(basket: Basket) -> list[dict]:
    return [line.to_dict() for line in basket.lines]


def find_snapshot(payment_intent_id: str) -> CheckoutSnapshot | None:
    repo = current_domain.repository_for(CheckoutSnapshot)
    found = repo._dao.query.filter(payment_intent_id=payment_intent_id).all().items
    return found[0] if found else None


def get_snapshot(payment_intent_id: str) -> CheckoutSnapshot:
    snapshot = find_snapshot(payment_intent_id)
    if snapshot is None:
        raise ObjectNotFoundError(
            {"payment_intent_id": [f"No checkout found for payment intent {payment_intent_id}"]}
        )
    return snapshot


def record_snapshot(command: RecordCheckoutSnapshot) -> None:
    """Persist the snapshot; a replayed intent keeps its first snapshot."""
    if find_snapshot(command.payment_intent_id) is not None:
        return
    try:
        current_domain.process(command, asynchronous=False)
    except IntegrityError:
        # A concurrent replay of the same intent stored it first
        logger.debug("checkout_snapshot_exists", payment_intent_id=command.payment_intent_id)

"""Operator stock adjustments: commands and handler."""

import structlog
from protean import handle
from protean.fields import Boolean, Identifier, Integer, String
from protean.utils.globals import current_domain

from inventory.domain import inventory
from inventory.stock import ledger
from inventory.stock.product import Product
from shared.db import uow_session

logger = structlog.get_logger(__name__)


@inventory.command(part_of="Product")
class RegisterProduct:
    name = String(required=True, max_length=200)
    unit_price_cents = Integer(required=True, min_value=0)
    initial_stock = Integer(default=0, min_value=0)
    size = String(max_length=50)


@inventory.command(part_of="Product")
class ReceiveStock:
    """Book a delivery from a supplier."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@inventory.command(part_of="Product")
class SetAvailability:
    """Mark a product as (not) for sale without touching its counters."""

    product_id = Identifier(required=True)
    is_available = Boolean(required=True)


@inventory.command_handler(part_of=Product)
class StockAdjustmentHandler:
    @handle(RegisterProduct)
    def register_product(self, command):
        product = Product.register(
            name=command.name,
            unit_price_cents=command.unit_price_cents,
            on_hand=command.initial_stock,
            size=command.size,
        )
        current_domain.repository_for(Product).add(product)
        logger.info("product_registered", product_id=str(product.id), on_hand=product.on_hand)
        return str(product.id)

    @handle(ReceiveStock)
    def receive_stock(self, command):
        ledger.receive(uow_session(), command.product_id, command.quantity)

    @handle(SetAvailability)
    def set_availability(self, command):
        ledger.set_availability(uow_session(), command.product_id, command.is_available)


def product_details(product_id: str) -> dict:
    product = current_domain.repository_for(Product).get(product_id)
    return {
        "product_id": str(product.id),
        "name": product.name,
        "size": product.size,
        "unit_price_cents": product.unit_price_cents,
        "is_available": product.is_available,
        "on_hand": product.on_hand,
        "in_stock": product.is_sellable,
    }


def for_sale(product_ids) -> set[str]:
    """The ids among ``product_ids`` that exist and are marked for sale."""
    with inventory.domain_context():
        repo = current_domain.repository_for(Product)
        found = repo._dao.query.filter(id__in=list(product_ids)).all().items
    return {str(product.id) for product in found if product.is_available}

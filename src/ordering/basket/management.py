"""Basket management: commands, handler and owner lookups.

Every mutation is one unit of work covering both the stock ledger and the
basket rows, so a refused reservation leaves the basket exactly as it was.
Handlers claim the basket row before loading it; concurrent edits of one
basket therefore apply one after the other, each on the state the previous
one committed.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError

from inventory.stock import ledger
from ordering.basket.basket import Basket, BasketOwner
from ordering.domain import ordering
from shared.db import claim_row, uow_session

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@ordering.command(part_of="Basket")
class CreateBasket:
    customer_id = Identifier()
    session_id = String(max_length=255)


@ordering.command(part_of="Basket")
class AddBasketLine:
    basket_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True)


@ordering.command(part_of="Basket")
class SetBasketLineQuantity:
    basket_id = Identifier(required=True)
    line_id = Identifier(required=True)
    quantity = Integer(required=True)


@ordering.command(part_of="Basket")
class RemoveBasketLine:
    basket_id = Identifier(required=True)
    line_id = Identifier(required=True)


@ordering.command(part_of="Basket")
class ClearBasket:
    """Empty the basket and give its reservations back to stock."""

    basket_id = Identifier(required=True)


@ordering.command(part_of="Basket")
class MergeGuestBasket:
    """Move a guest basket's lines, and their reservations, into a customer's basket."""

    basket_id = Identifier(required=True)
    guest_basket_id = Identifier(required=True)


def claim_basket(session, basket_id) -> Basket:
    if not claim_row(session, "baskets", basket_id):
        raise ObjectNotFoundError({"basket_id": [f"Basket {basket_id} not found"]})
    return current_domain.repository_for(Basket).get(basket_id)


@ordering.command_handler(part_of=Basket)
class BasketHandler:
    @handle(CreateBasket)
    def create_basket(self, command):
        basket = Basket.for_owner(BasketOwner(customer_id=command.customer_id, session_id=command.session_id))
        current_domain.repository_for(Basket).add(basket)
        # Surface a concurrent creation for the same owner here, not at commit
        uow_session().flush()
        return str(basket.id)

    @handle(AddBasketLine)
    def add_line(self, command):
        session = uow_session()
        basket = claim_basket(session, command.basket_id)

        product = ledger.product_row(session, command.product_id)
        if product is None:
            raise ObjectNotFoundError({"product_id": [f"Product {command.product_id} not found"]})
        basket.check_add(product.id, product.is_available, product.name, command.quantity)

        ledger.reserve(session, product.id, command.quantity)
        basket.add_line(product.id, product.name, product.size, product.unit_price_cents, command.quantity)
        current_domain.repository_for(Basket).add(basket)
        return str(basket.id)

    @handle(SetBasketLineQuantity)
    def set_line_quantity(self, command):
        session = uow_session()
        basket = claim_basket(session, command.basket_id)
        line = basket.get_line(command.line_id)
        product_id = str(line.product_id)

        delta = command.quantity - line.quantity
        if delta > 0:
            ledger.reserve(session, product_id, delta)
        basket.set_quantity(command.line_id, command.quantity)
        if delta < 0:
            ledger.release(session, product_id, -delta)
        current_domain.repository_for(Basket).add(basket)
        return str(basket.id)

    @handle(RemoveBasketLine)
    def remove_line(self, command):
        session = uow_session()
        basket = claim_basket(session, command.basket_id)
        line = basket.remove_line(command.line_id)
        ledger.release(session, str(line.product_id), line.quantity)
        current_domain.repository_for(Basket).add(basket)
        return str(basket.id)

    @handle(ClearBasket)
    def clear_basket(self, command):
        session = uow_session()
        basket = claim_basket(session, command.basket_id)
        for line in basket.clear():
            ledger.release(session, line["product_id"], line["quantity"])
        current_domain.repository_for(Basket).add(basket)
        return str(basket.id)

    @handle(MergeGuestBasket)
    def merge_guest_basket(self, command):
        session = uow_session()
        repo = current_domain.repository_for(Basket)
        basket = claim_basket(session, command.basket_id)
        guest = claim_basket(session, command.guest_basket_id)

        # Reservations move with the lines; only units beyond the line cap go back
        excess = basket.absorb(guest.clear())
        for product_id, units in excess.items():
            ledger.release(session, product_id, units)

        repo.add(guest)
        repo.add(basket)
        return str(basket.id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def find_basket(owner: BasketOwner) -> Basket | None:
    repo = current_domain.repository_for(Basket)
    if owner.customer_id:
        found = repo._dao.query.filter(customer_id=owner.customer_id).all().items
    else:
        found = repo._dao.query.filter(session_id=owner.session_id).all().items
    return found[0] if found else None


def view_basket(owner: BasketOwner) -> Basket | None:
    return find_basket(owner)


def ensure_basket(owner: BasketOwner) -> str:
    """Return the owner's basket id, creating the basket on first use."""
    basket = find_basket(owner)
    if basket is not None:
        return str(basket.id)

    try:
        basket_id = current_domain.process(
            CreateBasket(customer_id=owner.customer_id, session_id=owner.session_id),
            asynchronous=False,
        )
    except IntegrityError:
        # Another request created it first
        return str(find_basket(owner).id)
    logger.info("basket_created", basket_id=basket_id, guest=owner.is_guest)
    return basket_id


def _require_basket(owner: BasketOwner) -> Basket:
    basket = find_basket(owner)
    if basket is None:
        raise ObjectNotFoundError({"basket": ["Basket not found"]})
    return basket


def _reload(basket_id: str) -> Basket:
    return current_domain.repository_for(Basket).get(basket_id)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def add_line(owner: BasketOwner, product_id: str, quantity: int) -> Basket:
    basket_id = ensure_basket(owner)
    current_domain.process(
        AddBasketLine(basket_id=basket_id, product_id=product_id, quantity=quantity),
        asynchronous=False,
    )
    logger.info("basket_line_added", basket_id=basket_id, product_id=product_id, quantity=quantity)
    return _reload(basket_id)


def set_line_quantity(owner: BasketOwner, line_id: str, quantity: int) -> Basket:
    basket_id = str(_require_basket(owner).id)
    current_domain.process(
        SetBasketLineQuantity(basket_id=basket_id, line_id=line_id, quantity=quantity),
        asynchronous=False,
    )
    logger.info("basket_line_quantity_set", basket_id=basket_id, line_id=line_id, quantity=quantity)
    return _reload(basket_id)


def remove_line(owner: BasketOwner, line_id: str) -> Basket:
    basket_id = str(_require_basket(owner).id)
    current_domain.process(RemoveBasketLine(basket_id=basket_id, line_id=line_id), asynchronous=False)
    logger.info("basket_line_removed", basket_id=basket_id, line_id=line_id)
    return _reload(basket_id)


def clear_basket(owner: BasketOwner) -> Basket | None:
    basket = find_basket(owner)
    if basket is None:
        return None
    current_domain.process(ClearBasket(basket_id=str(basket.id)), asynchronous=False)
    logger.info("basket_cleared", basket_id=str(basket.id))
    return _reload(str(basket.id))


def merge_guest_basket(session_id: str, customer_id: str) -> Basket:
    """Fold a guest basket into the customer's basket after sign-in.

    Quantities for the same product are combined up to the line maximum; the
    reservation for units beyond it is released.
    """
    basket_id = ensure_basket(BasketOwner(customer_id=customer_id))
    guest = find_basket(BasketOwner(session_id=session_id))
    if guest is None or guest.is_empty:
        return _reload(basket_id)

    current_domain.process(
        MergeGuestBasket(basket_id=basket_id, guest_basket_id=str(guest.id)),
        asynchronous=False,
    )
    logger.info("guest_basket_merged", basket_id=basket_id, session_id=session_id)
    return _reload(basket_id)

"""Stock ledger: the only code path that changes product stock counters.

Each operation is a single conditional UPDATE executed in the caller's
unit-of-work session, so it commits or rolls back together with the basket
or order change it belongs to. Two concurrent reservations of the last unit
are serialized by the database: exactly one statement matches its WHERE
clause.

Counter movements:
    reserve   on_hand - n                  (basket line added or grown)
    release   on_hand + n, capped at capacity (line removed, order cancelled)
    receive   on_hand + n, capacity + n    (supplier delivery)
    deliver   capacity - n, kept >= on_hand (order handed to the customer)
"""

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from sqlalchemy import Boolean, Integer, String, column, select, table, update
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from shared.errors import InsufficientStock

logger = structlog.get_logger(__name__)

products = table(
    "products",
    column("id", String),
    column("name", String),
    column("size", String),
    column("unit_price_cents", Integer),
    column("is_available", Boolean),
    column("on_hand", Integer),
    column("capacity", Integer),
)


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise ValidationError({"quantity": ["Quantity must be positive"]})


def _not_found(product_id: str) -> ObjectNotFoundError:
    return ObjectNotFoundError({"product_id": [f"Product {product_id} not found"]})


def product_row(session: Session, product_id: str) -> Row | None:
    """Catalogue data and counters as committed (or written by this transaction)."""
    return session.execute(select(products).where(products.c.id == product_id)).one_or_none()


def available_quantity(session: Session, product_id: str) -> int:
    on_hand = session.execute(select(products.c.on_hand).where(products.c.id == product_id)).scalar_one_or_none()
    if on_hand is None:
        raise _not_found(product_id)
    return on_hand


def reserve(session: Session, product_id: str, quantity: int) -> None:
    """Take ``quantity`` units out of on-hand stock or raise InsufficientStock."""
    _require_positive(quantity)
    result = session.execute(
        update(products)
        .where(products.c.id == product_id, products.c.on_hand >= quantity)
        .values(on_hand=products.c.on_hand - quantity)
    )
    if result.rowcount == 1:
        logger.debug("stock_reserved", product_id=product_id, quantity=quantity)
        return

    available = available_quantity(session, product_id)
    logger.info(
        "stock_reservation_refused",
        product_id=product_id,
        requested=quantity,
        available=available,
    )
    raise InsufficientStock(product_id=product_id, requested=quantity, available=available)


def release(session: Session, product_id: str, quantity: int) -> bool:
    """Return ``quantity`` units to on-hand stock.

    The statement never lifts on-hand above capacity. A release that would
    is refused and logged at error level; callers get ``False``.
    """
    _require_positive(quantity)
    result = session.execute(
        update(products)
        .where(products.c.id == product_id, products.c.on_hand + quantity <= products.c.capacity)
        .values(on_hand=products.c.on_hand + quantity)
    )
    if result.rowcount == 1:
        logger.debug("stock_released", product_id=product_id, quantity=quantity)
        return True

    logger.error(
        "stock_release_refused",
        product_id=product_id,
        quantity=quantity,
        available=available_quantity(session, product_id),
    )
    return False


def receive(session: Session, product_id: str, quantity: int) -> None:
    """Book newly received units: raises on-hand and capacity together."""
    _require_positive(quantity)
    result = session.execute(
        update(products)
        .where(products.c.id == product_id)
        .values(on_hand=products.c.on_hand + quantity, capacity=products.c.capacity + quantity)
    )
    if result.rowcount != 1:
        raise _not_found(product_id)
    logger.info("stock_received", product_id=product_id, quantity=quantity)


def deliver(session: Session, product_id: str, quantity: int) -> bool:
    """Units handed to a customer leave the store for good.

    Lowers capacity so a later release for the same units has no room to
    put them back. Capacity never drops below on-hand; a delivery that
    would is refused and logged at error level.
    """
    _require_positive(quantity)
    result = session.execute(
        update(products)
        .where(products.c.id == product_id, products.c.capacity - quantity >= products.c.on_hand)
        .values(capacity=products.c.capacity - quantity)
    )
    if result.rowcount == 1:
        logger.debug("stock_delivered", product_id=product_id, quantity=quantity)
        return True

    logger.error(
        "stock_delivery_refused",
        product_id=product_id,
        quantity=quantity,
        available=available_quantity(session, product_id),
    )
    return False


def set_availability(session: Session, product_id: str, is_available: bool) -> None:
    result = session.execute(
        update(products).where(products.c.id == product_id).values(is_available=is_available)
    )
    if result.rowcount != 1:
        raise _not_found(product_id)
    logger.info("product_availability_changed", product_id=product_id, is_available=is_available)

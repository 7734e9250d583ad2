"""Basket aggregate.

A basket belongs to exactly one owner: a signed-in customer or an anonymous
session. Each line keeps the unit price (plus name and size) that was
current when the line was created, so later catalogue price changes do not
silently alter what the customer sees. The subtotal is never edited
directly; every mutation recomputes it from the lines and bumps
``revision``.

The methods here only keep the aggregate consistent. Stock is reserved and
released by ``ordering.basket.management`` in the same unit of work.
"""

from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from ordering.domain import ordering

MAX_LINE_QUANTITY = 10


@ordering.value_object
class BasketOwner:
    customer_id = Identifier()
    session_id = String(max_length=255)

    @invariant.post
    def belongs_to_exactly_one_owner(self):
        if bool(self.customer_id) == bool(self.session_id):
            raise ValidationError({"owner": ["A basket belongs to either a customer or a session"]})

    @property
    def is_guest(self) -> bool:
        return not self.customer_id


@ordering.entity(part_of="Basket", schema_name="basket_lines")
class BasketLine:
    product_id = Identifier(required=True)
    name = String(required=True, max_length=200)
    size = String(max_length=50)
    quantity = Integer(required=True, min_value=1, max_value=MAX_LINE_QUANTITY)
    unit_price_cents = Integer(required=True, min_value=0)
    added_at = DateTime()

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "name": self.name,
            "size": self.size,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
        }


@ordering.aggregate(schema_name="baskets")
class Basket:
    customer_id = Identifier()  # Null for guest baskets
    session_id = String(max_length=255)  # Guest basket identification
    lines = HasMany(BasketLine)
    subtotal_cents = Integer(default=0, min_value=0)
    revision = Integer(default=0, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def for_owner(cls, owner: BasketOwner):
        now = datetime.now(UTC)
        return cls(
            customer_id=owner.customer_id,
            session_id=owner.session_id,
            subtotal_cents=0,
            revision=0,
            created_at=now,
            updated_at=now,
        )

    @property
    def owner(self) -> BasketOwner:
        return BasketOwner(customer_id=self.customer_id, session_id=self.session_id)

    # -------------------------------------------------------------------
    # Line management
    # -------------------------------------------------------------------
    def line_for(self, product_id):
        return next((line for line in self.lines if str(line.product_id) == str(product_id)), None)

    def get_line(self, line_id):
        line = next((line for line in self.lines if str(line.id) == str(line_id)), None)
        if line is None:
            raise ObjectNotFoundError({"line_id": [f"Basket line {line_id} not found"]})
        return line

    def check_add(self, product_id, is_available, name, quantity):
        """Validate an add before any stock is reserved for it."""
        _validate_quantity(quantity, minimum=1)
        if not is_available:
            raise ValidationError({"product_id": [f"{name} is not available"]})
        existing = self.line_for(product_id)
        combined = quantity + (existing.quantity if existing else 0)
        if combined > MAX_LINE_QUANTITY:
            raise ValidationError({"quantity": [f"At most {MAX_LINE_QUANTITY} units per product"]})

    def add_line(self, product_id, name, size, unit_price_cents, quantity):
        line = self.line_for(product_id)
        if line is None:
            line = BasketLine(
                product_id=product_id,
                name=name,
                size=size,
                quantity=quantity,
                unit_price_cents=unit_price_cents,
                added_at=datetime.now(UTC),
            )
            self.add_lines(line)
        else:
            line.quantity += quantity
        self.touch()
        return line

    def set_quantity(self, line_id, quantity) -> int:
        """Change a line's quantity (0 removes it). Returns the delta applied."""
        _validate_quantity(quantity, minimum=0)
        line = self.get_line(line_id)
        delta = quantity - line.quantity
        if quantity == 0:
            self.remove_lines(line)
        else:
            line.quantity = quantity
        self.touch()
        return delta

    def remove_line(self, line_id):
        line = self.get_line(line_id)
        self.remove_lines(line)
        self.touch()
        return line

    def clear(self) -> list[dict]:
        """Empty the basket. Returns what the lines held."""
        removed = [line.to_dict() for line in self.lines]
        for line in list(self.lines):
            self.remove_lines(line)
        self.touch()
        return removed

    def absorb(self, guest_lines: list[dict]) -> dict[str, int]:
        """Fold guest lines into this basket, capping each line at the maximum.

        Returns the units per product that no longer fit.
        """
        excess = {}
        for guest_line in guest_lines:
            existing = self.line_for(guest_line["product_id"])
            if existing is None:
                self.add_lines(BasketLine(**guest_line, added_at=datetime.now(UTC)))
                continue
            combined = existing.quantity + guest_line["quantity"]
            existing.quantity = min(combined, MAX_LINE_QUANTITY)
            if combined > existing.quantity:
                excess[guest_line["product_id"]] = combined - existing.quantity
        self.touch()
        return excess

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def touch(self) -> None:
        self.subtotal_cents = sum(line.line_total_cents for line in self.lines)
        self.revision = (self.revision or 0) + 1
        self.updated_at = datetime.now(UTC)


def _validate_quantity(quantity: int, minimum: int) -> None:
    if quantity < minimum or quantity > MAX_LINE_QUANTITY:
        raise ValidationError({"quantity": [f"Quantity must be between {minimum} and {MAX_LINE_QUANTITY}"]})

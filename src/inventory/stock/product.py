"""Sellable products and their stock counters.

Stock Level Model:
    on_hand:   Units that can still be reserved by a basket
    capacity:  Upper bound for on_hand (units received, minus units delivered)
    available: Operator switch; an unavailable product cannot be added or checked out

Units reserved by baskets and units sold on orders are already subtracted
from ``on_hand``. After registration the counters are only changed through
``inventory.stock.ledger``.
"""

from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String

from inventory.domain import inventory


@inventory.aggregate(schema_name="products")
class Product:
    name = String(required=True, max_length=200)
    size = String(max_length=50)
    unit_price_cents = Integer(required=True, min_value=0)
    is_available = Boolean(default=True)
    on_hand = Integer(default=0, min_value=0)
    capacity = Integer(default=0, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def on_hand_cannot_exceed_capacity(self):
        if (self.on_hand or 0) > (self.capacity or 0):
            raise ValidationError({"on_hand": ["Stock on hand cannot exceed capacity"]})

    @classmethod
    def register(cls, name, unit_price_cents, on_hand=0, size=None, is_available=True):
        now = datetime.now(UTC)
        return cls(
            name=name,
            size=size,
            unit_price_cents=unit_price_cents,
            is_available=is_available,
            on_hand=on_hand,
            capacity=on_hand,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_sellable(self) -> bool:
        return bool(self.is_available) and self.on_hand > 0

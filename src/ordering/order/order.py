"""Order aggregate: the immutable record of a paid checkout.

The append-only event log (``events``) is the source of truth. ``status``
and ``payment_status`` are a cache: every change appends an event first and
then recomputes both fields by folding the whole log.

State Machine:
    CONFIRMED → PREPARING → OUT_FOR_DELIVERY → DELIVERED
    CANCELLED (from CONFIRMED, PREPARING, OUT_FOR_DELIVERY)
    DELIVERED and CANCELLED are terminal.
"""

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from secrets import token_hex

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String, Text

from ordering.domain import ordering
from shared.errors import InvalidTransition


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class OrderEventKind(Enum):
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELED = "payment_canceled"
    DISPUTE_CREATED = "dispute_created"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

TERMINAL_STATES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

# Lifecycle steps shown on the tracking page, in order
TRACKED_STATES = (
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

_EVENT_FOR_STATUS = {
    OrderStatus.PREPARING: OrderEventKind.PREPARING,
    OrderStatus.OUT_FOR_DELIVERY: OrderEventKind.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: OrderEventKind.DELIVERED,
    OrderStatus.CANCELLED: OrderEventKind.CANCELLED,
}

_STATUS_FOR_EVENT = {kind: status for status, kind in _EVENT_FOR_STATUS.items()}


def fold(kinds: Iterable[OrderEventKind]) -> tuple[OrderStatus, PaymentStatus]:
    """Replay event kinds into (status, payment_status)."""
    status, payment = OrderStatus.CONFIRMED, PaymentStatus.PENDING
    for kind in kinds:
        if kind is OrderEventKind.CONFIRMED:
            status, payment = OrderStatus.CONFIRMED, PaymentStatus.PAID
        elif kind in _STATUS_FOR_EVENT:
            status = _STATUS_FOR_EVENT[kind]
        elif kind in (OrderEventKind.PAYMENT_FAILED, OrderEventKind.PAYMENT_CANCELED):
            status, payment = OrderStatus.CANCELLED, PaymentStatus.FAILED
        # dispute_created is informational
    return status, payment


def generate_order_number(prefix: str, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"{prefix}-{now:%Y%m%d}-{token_hex(3).upper()}"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@ordering.entity(part_of="Order", schema_name="order_items")
class OrderItem:
    product_id = Identifier(required=True)
    name = String(required=True, max_length=200)
    size = String(max_length=50)
    quantity = Integer(required=True, min_value=1)
    unit_price_cents = Integer(required=True, min_value=0)

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@ordering.entity(part_of="Order", schema_name="order_events")
class OrderEvent:
    sequence = Integer(required=True, min_value=1)
    kind = String(required=True, max_length=40, choices=OrderEventKind)
    details = Text()  # JSON object
    recorded_at = DateTime(required=True)

    @property
    def event_kind(self) -> OrderEventKind:
        return OrderEventKind(self.kind)

    @property
    def detail_map(self) -> dict:
        return json.loads(self.details) if self.details else {}


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@ordering.aggregate(schema_name="orders")
class Order:
    order_number = String(required=True, max_length=40)
    payment_intent_id = String(required=True, max_length=255)
    customer_id = Identifier(required=True)
    address_id = Identifier(required=True)
    basket_id = Identifier(required=True)
    status = String(choices=OrderStatus, default=OrderStatus.CONFIRMED.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    subtotal_cents = Integer(required=True, min_value=0)
    delivery_fee_cents = Integer(required=True, min_value=0)
    total_cents = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    eta_band = String(required=True, max_length=40)
    substitution_allowed = Boolean(default=False)
    items = HasMany(OrderItem)
    events = HasMany(OrderEvent)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def total_is_subtotal_plus_delivery_fee(self):
        if self.total_cents != self.subtotal_cents + self.delivery_fee_cents:
            raise ValidationError({"total": ["Total must equal subtotal plus delivery fee"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number,
        payment_intent_id,
        customer_id,
        address_id,
        basket_id,
        items_data,
        subtotal_cents,
        delivery_fee_cents,
        total_cents,
        currency,
        eta_band,
        substitution_allowed=False,
        paid=True,
        confirmation_details=None,
    ):
        """Create an order from a priced checkout.

        Args:
            items_data: List of dicts with product_id, name, size, quantity,
                        unit_price_cents.
            paid: Record the payment confirmation right away. Orders are
                  only ever created for succeeded payments; ``False`` exists
                  for building unpaid fixtures.
        """
        if not items_data:
            raise ValidationError({"items": ["Order must contain at least one item"]})
        if sum(item["quantity"] * item["unit_price_cents"] for item in items_data) != subtotal_cents:
            raise ValidationError({"subtotal": ["Subtotal must equal the sum of the items"]})

        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            payment_intent_id=payment_intent_id,
            customer_id=customer_id,
            address_id=address_id,
            basket_id=basket_id,
            subtotal_cents=subtotal_cents,
            delivery_fee_cents=delivery_fee_cents,
            total_cents=total_cents,
            currency=currency,
            eta_band=eta_band,
            substitution_allowed=substitution_allowed,
            created_at=now,
            updated_at=now,
        )
        for item in items_data:
            order.add_items(
                OrderItem(
                    product_id=item["product_id"],
                    name=item["name"],
                    size=item.get("size"),
                    quantity=item["quantity"],
                    unit_price_cents=item["unit_price_cents"],
                )
            )
        if paid:
            order.record(OrderEventKind.CONFIRMED, confirmation_details or {"payment_intent_id": payment_intent_id})
        return order

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def order_payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.payment_status)

    @property
    def is_terminal(self) -> bool:
        return self.order_status in TERMINAL_STATES

    def history(self) -> list[OrderEvent]:
        # Child rows come back unordered
        return sorted(self.events, key=lambda event: event.sequence)

    def event_kinds(self) -> list[OrderEventKind]:
        return [event.event_kind for event in self.history()]

    def has_event(self, kind: OrderEventKind) -> bool:
        return kind in self.event_kinds()

    def has_provider_event(self, event_id: str) -> bool:
        return any(event.detail_map.get("event_id") == event_id for event in self.events)

    def _refresh_cache(self) -> None:
        status, payment = fold(self.event_kinds())
        self.status = status.value
        self.payment_status = payment.value
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def record(self, kind: OrderEventKind, details: dict | None = None) -> OrderEvent:
        """Append an event, then refresh the cached status fields."""
        event = OrderEvent(
            sequence=len(self.events) + 1,
            kind=kind.value,
            details=json.dumps(details or {}),
            recorded_at=datetime.now(UTC),
        )
        self.add_events(event)
        self._refresh_cache()
        return event

    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = self.order_status
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def transition_to(self, target_status: OrderStatus, details: dict | None = None) -> OrderEvent:
        self._assert_can_transition(target_status)
        return self.record(_EVENT_FOR_STATUS[target_status], details)

    def fail_payment(self, kind: OrderEventKind, details: dict | None = None) -> OrderEvent:
        """Cancel an unpaid order because the provider reported failure or cancellation."""
        if kind not in (OrderEventKind.PAYMENT_FAILED, OrderEventKind.PAYMENT_CANCELED):
            raise ValidationError({"kind": [f"{kind.value} is not a payment failure"]})
        if self.order_payment_status is PaymentStatus.PAID:
            raise InvalidTransition({"payment_status": ["A paid order cannot be failed by the provider"]})
        self._assert_can_transition(OrderStatus.CANCELLED)
        return self.record(kind, details)

    # -------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------
    def tracking_timeline(self) -> list[dict]:
        reached: dict[OrderStatus, datetime] = {}
        for event in self.history():
            kind = event.event_kind
            if kind is OrderEventKind.CONFIRMED:
                reached.setdefault(OrderStatus.CONFIRMED, event.recorded_at)
            elif kind in _STATUS_FOR_EVENT and _STATUS_FOR_EVENT[kind] in TRACKED_STATES:
                reached.setdefault(_STATUS_FOR_EVENT[kind], event.recorded_at)
        return [
            {
                "status": state.value,
                "label": state.value.replace("_", " ").title(),
                "completed": state in reached,
                "timestamp": reached.get(state),
            }
            for state in TRACKED_STATES
        ]

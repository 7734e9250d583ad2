"""Pydantic request/response schemas for the Ordering API.

These are external contracts, kept separate from the domain aggregates.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from delivery.api.schemas import AddressSchema
from ordering.basket.basket import MAX_LINE_QUANTITY, Basket
from ordering.order.order import Order


# ---------------------------------------------------------------------------
# Basket Schemas
# ---------------------------------------------------------------------------
class AddLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1, le=MAX_LINE_QUANTITY)

    model_config = {"json_schema_extra": {"examples": [{"product_id": "prod-001", "quantity": 2}]}}


class SetQuantityRequest(BaseModel):
    quantity: int = Field(ge=0, le=MAX_LINE_QUANTITY)


class MergeBasketRequest(BaseModel):
    session_id: str


class BasketLineResponse(BaseModel):
    line_id: str
    product_id: str
    name: str
    size: str | None = None
    quantity: int
    unit_price_cents: int
    line_total_cents: int


class BasketResponse(BaseModel):
    basket_id: str | None = None
    lines: list[BasketLineResponse] = []
    item_count: int = 0
    subtotal_cents: int = 0

    @classmethod
    def from_basket(cls, basket: Basket | None) -> "BasketResponse":
        if basket is None:
            return cls()
        return cls(
            basket_id=str(basket.id),
            lines=[
                BasketLineResponse(
                    line_id=str(line.id),
                    product_id=str(line.product_id),
                    name=line.name,
                    size=line.size,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    line_total_cents=line.line_total_cents,
                )
                for line in basket.lines
            ],
            item_count=basket.item_count,
            subtotal_cents=basket.subtotal_cents,
        )


# ---------------------------------------------------------------------------
# Checkout Schemas
# ---------------------------------------------------------------------------
class CreatePaymentIntentRequest(BaseModel):
    address: AddressSchema
    substitution_allowed: bool = False


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: str | None = None
    status: str
    subtotal_cents: int
    delivery_fee_cents: int
    total_cents: int
    currency: str
    zone_name: str
    eta_band: str


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str


class CheckoutStateResponse(BaseModel):
    payment_intent_id: str
    state: str
    order_id: str | None = None
    order_number: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Order Schemas
# ---------------------------------------------------------------------------
class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    size: str | None = None
    quantity: int
    unit_price_cents: int
    line_total_cents: int


class OrderEventResponse(BaseModel):
    kind: str
    recorded_at: datetime
    metadata: dict = {}


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    payment_intent_id: str
    status: str
    payment_status: str
    subtotal_cents: int
    delivery_fee_cents: int
    total_cents: int
    currency: str
    eta_band: str
    substitution_allowed: bool
    created_at: datetime
    items: list[OrderItemResponse]
    events: list[OrderEventResponse]

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            order_id=str(order.id),
            order_number=order.order_number,
            payment_intent_id=order.payment_intent_id,
            status=order.status,
            payment_status=order.payment_status,
            subtotal_cents=order.subtotal_cents,
            delivery_fee_cents=order.delivery_fee_cents,
            total_cents=order.total_cents,
            currency=order.currency,
            eta_band=order.eta_band,
            substitution_allowed=order.substitution_allowed,
            created_at=order.created_at,
            items=[
                OrderItemResponse(
                    product_id=str(item.product_id),
                    name=item.name,
                    size=item.size,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    line_total_cents=item.line_total_cents,
                )
                for item in order.items
            ],
            events=[
                OrderEventResponse(kind=event.kind, recorded_at=event.recorded_at, metadata=event.detail_map)
                for event in order.history()
            ],
        )


class TrackingStepResponse(BaseModel):
    status: str
    label: str
    completed: bool
    timestamp: datetime | None = None


class TrackingResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    eta_band: str
    timeline: list[TrackingStepResponse]


class CancelOrderRequest(BaseModel):
    reason: str | None = None


class UpdateStatusRequest(BaseModel):
    status: str
    metadata: dict = {}

    model_config = {"json_schema_extra": {"examples": [{"status": "PREPARING", "metadata": {"picker": "staff-7"}}]}}

"""FastAPI routes for the Ordering context: basket, checkout and orders."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Header
from protean.exceptions import ValidationError

from ordering.api.schemas import (
    AddLineRequest,
    BasketResponse,
    CancelOrderRequest,
    CheckoutStateResponse,
    ConfirmPaymentRequest,
    CreatePaymentIntentRequest,
    MergeBasketRequest,
    OrderResponse,
    PaymentIntentResponse,
    SetQuantityRequest,
    TrackingResponse,
    TrackingStepResponse,
    UpdateStatusRequest,
)
from ordering.basket import management
from ordering.basket.basket import BasketOwner
from ordering.checkout.address import AddressInput
from ordering.checkout.intent import create_intent
from ordering.checkout.status import checkout_state, owned_snapshot
from ordering.order.lifecycle import advance_order, cancel_order, get_order
from ordering.order.materialization import materialize
from ordering.order.order import OrderStatus
from payments.refund import refund_unfulfillable
from shared.errors import AuthenticationRequired, UnfulfillableOrder


# ---------------------------------------------------------------------------
# Request identity
# ---------------------------------------------------------------------------
def basket_owner(
    x_customer_id: str | None = Header(default=None),
    x_session_id: str | None = Header(default=None),
) -> BasketOwner:
    """Signed-in customers are identified by customer id, guests by session id."""
    if x_customer_id:
        return BasketOwner(customer_id=x_customer_id)
    if x_session_id:
        return BasketOwner(session_id=x_session_id)
    raise ValidationError({"session": ["X-Customer-Id or X-Session-Id header is required"]})


def current_customer(x_customer_id: str | None = Header(default=None)) -> str:
    if not x_customer_id:
        raise AuthenticationRequired({"customer": ["Sign in to continue"]})
    return x_customer_id


# ---------------------------------------------------------------------------
# Basket Router
# ---------------------------------------------------------------------------
basket_router = APIRouter(prefix="/basket", tags=["basket"])


@basket_router.get("", response_model=BasketResponse)
async def get_basket(owner: BasketOwner = Depends(basket_owner)) -> BasketResponse:
    return BasketResponse.from_basket(management.view_basket(owner))


@basket_router.post("/lines", status_code=201, response_model=BasketResponse)
async def add_line(body: AddLineRequest, owner: BasketOwner = Depends(basket_owner)) -> BasketResponse:
    basket = management.add_line(owner, body.product_id, body.quantity)
    return BasketResponse.from_basket(basket)


@basket_router.put("/lines/{line_id}", response_model=BasketResponse)
async def set_line_quantity(
    line_id: str,
    body: SetQuantityRequest,
    owner: BasketOwner = Depends(basket_owner),
) -> BasketResponse:
    basket = management.set_line_quantity(owner, line_id, body.quantity)
    return BasketResponse.from_basket(basket)


@basket_router.delete("/lines/{line_id}", response_model=BasketResponse)
async def remove_line(line_id: str, owner: BasketOwner = Depends(basket_owner)) -> BasketResponse:
    return BasketResponse.from_basket(management.remove_line(owner, line_id))


@basket_router.delete("", response_model=BasketResponse)
async def clear_basket(owner: BasketOwner = Depends(basket_owner)) -> BasketResponse:
    return BasketResponse.from_basket(management.clear_basket(owner))


@basket_router.post("/merge", response_model=BasketResponse)
async def merge_basket(body: MergeBasketRequest, customer_id: str = Depends(current_customer)) -> BasketResponse:
    """Fold the guest basket of ``session_id`` into the signed-in customer's basket."""
    basket = management.merge_guest_basket(body.session_id, customer_id)
    return BasketResponse.from_basket(basket)


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("/payment-intents", status_code=201, response_model=PaymentIntentResponse)
async def create_payment_intent(
    body: CreatePaymentIntentRequest,
    customer_id: str = Depends(current_customer),
) -> PaymentIntentResponse:
    address = AddressInput(
        street=body.address.street,
        number=body.address.number,
        apartment=body.address.apartment,
        postal_code=body.address.postal_code,
        city=body.address.city,
    )
    intent = create_intent(
        customer_id,
        address,
        substitution_allowed=body.substitution_allowed,
    )
    return PaymentIntentResponse(**asdict(intent))


@checkout_router.post("/confirm", response_model=OrderResponse)
async def confirm_payment(body: ConfirmPaymentRequest, customer_id: str = Depends(current_customer)) -> OrderResponse:
    """Synchronous completion path; the webhook may already have created the order."""
    owned_snapshot(body.payment_intent_id, customer_id)
    try:
        order = materialize(body.payment_intent_id)
    except UnfulfillableOrder as error:
        refund_unfulfillable(error)
        raise
    return OrderResponse.from_order(order)


@checkout_router.get("/payment-intents/{payment_intent_id}", response_model=CheckoutStateResponse)
async def get_checkout_state(
    payment_intent_id: str,
    customer_id: str = Depends(current_customer),
) -> CheckoutStateResponse:
    state = checkout_state(payment_intent_id, customer_id)
    return CheckoutStateResponse(**asdict(state))


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order_details(order_id: str, customer_id: str = Depends(current_customer)) -> OrderResponse:
    return OrderResponse.from_order(get_order(order_id, customer_id))


@order_router.get("/{order_id}/track", response_model=TrackingResponse)
async def track_order(order_id: str, customer_id: str = Depends(current_customer)) -> TrackingResponse:
    order = get_order(order_id, customer_id)
    return TrackingResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        eta_band=order.eta_band,
        timeline=[TrackingStepResponse(**step) for step in order.tracking_timeline()],
    )


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_my_order(
    order_id: str,
    body: CancelOrderRequest,
    customer_id: str = Depends(current_customer),
) -> OrderResponse:
    order = cancel_order(order_id, customer_id=customer_id, reason=body.reason)
    return OrderResponse.from_order(order)


@order_router.post("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(order_id: str, body: UpdateStatusRequest) -> OrderResponse:
    """Operator endpoint: move an order along its lifecycle."""
    try:
        target = OrderStatus(body.status.upper())
    except ValueError:
        raise ValidationError({"status": [f"Unknown status {body.status}"]}) from None

    if target is OrderStatus.CANCELLED:
        order = cancel_order(order_id, reason=body.metadata.get("reason"))
    else:
        order = advance_order(order_id, target, body.metadata)
    return OrderResponse.from_order(order)

"""FastAPI routes for the Payments context: provider webhooks and the
development controls of the fake gateway."""

from fastapi import APIRouter, Header, HTTPException, Request

from payments.api.schemas import (
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    PaymentIntentStateResponse,
    SimulatePaymentRequest,
    WebhookResponse,
)
from payments.gateway import get_gateway
from payments.gateway.fake_adapter import FakeGateway
from payments.webhook.reconciliation import handle_event
from shared.config import get_settings

# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/payments", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(default=""),
) -> WebhookResponse:
    """Receive a provider event. The raw body is needed for signature checks."""
    payload = await request.body()
    event = get_gateway().construct_event(payload, stripe_signature)
    result = handle_event(event)
    return WebhookResponse(
        event_id=result.event_id,
        outcome=result.outcome,
        order_id=result.order_id,
        duplicate=result.duplicate,
    )


# ---------------------------------------------------------------------------
# Fake Gateway Router
# ---------------------------------------------------------------------------
gateway_router = APIRouter(prefix="/payments/gateway", tags=["payments"])


def _fake_gateway() -> FakeGateway:
    if get_settings().is_production:
        raise HTTPException(status_code=403, detail="Gateway controls not available in production")
    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway controls only available for FakeGateway")
    return gateway


@gateway_router.post("/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure FakeGateway refund behavior (non-production only)."""
    gateway = _fake_gateway()
    gateway.configure(should_succeed=body.should_succeed, failure_reason=body.failure_reason)
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
    )


@gateway_router.post("/intents/{payment_intent_id}", response_model=PaymentIntentStateResponse)
async def simulate_payment(payment_intent_id: str, body: SimulatePaymentRequest) -> PaymentIntentStateResponse:
    """Play the customer's side of a payment: settle an intent as succeeded, failed or canceled."""
    gateway = _fake_gateway()
    if body.outcome == "succeeded":
        intent = gateway.succeed_intent(payment_intent_id)
    elif body.outcome == "failed":
        intent = gateway.fail_intent(payment_intent_id, body.failure_message or "Your card was declined.")
    elif body.outcome == "canceled":
        intent = gateway.cancel_intent(payment_intent_id)
    else:
        raise HTTPException(status_code=400, detail=f"Unknown outcome {body.outcome}")
    return PaymentIntentStateResponse(
        payment_intent_id=intent.id,
        status=intent.status,
        amount=intent.amount,
        currency=intent.currency,
    )

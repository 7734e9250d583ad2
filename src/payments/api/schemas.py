"""Pydantic request/response schemas for the Payments API."""

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Webhook Schemas
# ---------------------------------------------------------------------------
class WebhookResponse(BaseModel):
    received: bool = True
    event_id: str
    outcome: str
    order_id: str | None = None
    duplicate: bool = False


# ---------------------------------------------------------------------------
# Fake gateway controls (non-production)
# ---------------------------------------------------------------------------
class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str


class SimulatePaymentRequest(BaseModel):
    outcome: str  # succeeded, failed, canceled
    failure_message: str | None = None

    model_config = {"json_schema_extra": {"examples": [{"outcome": "succeeded"}]}}


class PaymentIntentStateResponse(BaseModel):
    payment_intent_id: str
    status: str
    amount: int
    currency: str

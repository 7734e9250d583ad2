"""Stripe payment gateway adapter.

Uses the stripe-python SDK with a per-adapter API key (no global
``stripe.api_key``). SDK errors are wrapped in PaymentProviderError so the
API layer answers 502; signature failures become InvalidWebhookSignature.
"""

import json

import stripe
import structlog

from payments.gateway.port import PaymentGateway, PaymentIntent, ProviderEvent, RefundResult, parse_event
from shared.errors import InvalidWebhookSignature, PaymentProviderError

logger = structlog.get_logger(__name__)


def _to_intent(intent) -> PaymentIntent:
    error = getattr(intent, "last_payment_error", None)
    return PaymentIntent(
        id=intent.id,
        status=intent.status,
        amount=intent.amount,
        currency=intent.currency,
        client_secret=getattr(intent, "client_secret", None),
        metadata=dict(intent.metadata or {}),
        last_payment_error=getattr(error, "message", None) if error else None,
    )


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("stripe_create_intent_failed", error=str(e), amount=amount)
            raise PaymentProviderError({"payment": [str(e.user_message or e)]}) from e
        return _to_intent(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error("stripe_retrieve_intent_failed", error=str(e), payment_intent_id=payment_intent_id)
            raise PaymentProviderError({"payment": [str(e.user_message or e)]}) from e
        return _to_intent(intent)

    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("stripe_signature_rejected", error=str(e))
            raise InvalidWebhookSignature() from e
        except ValueError as e:
            raise InvalidWebhookSignature({"payload": ["Malformed webhook payload"]}) from e
        return parse_event(json.loads(payload))

    def create_refund(
        self,
        payment_intent_id: str,
        amount: int | None,
        reason: str,
    ) -> RefundResult:
        params = {
            "payment_intent": payment_intent_id,
            "reason": "requested_by_customer",
            "metadata": {"reason": reason},
        }
        if amount is not None:
            params["amount"] = amount
        try:
            refund = stripe.Refund.create(
                **params,
                idempotency_key=f"refund-{payment_intent_id}",
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("stripe_refund_failed", error=str(e), payment_intent_id=payment_intent_id)
            return RefundResult(success=False, gateway_status="failed", failure_reason=str(e.user_message or e))
        return RefundResult(
            success=refund.status in ("succeeded", "pending"),
            gateway_refund_id=refund.id,
            gateway_status=refund.status,
        )

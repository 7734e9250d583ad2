"""Configurable fake payment gateway for development and testing.

This adapter simulates the provider without any external calls. Intents
live in memory; tests and the /payments/gateway endpoints move them to
``succeeded`` / ``requires_payment_method`` (failed) / ``canceled`` the
way a customer confirming a card would. Webhook payloads are signed with
the fixed signature ``test-signature``.
"""

import json
from uuid import uuid4

from protean.exceptions import ObjectNotFoundError

from payments.gateway.port import (
    CANCELED,
    SUCCEEDED,
    PaymentGateway,
    PaymentIntent,
    ProviderEvent,
    RefundResult,
    parse_event,
)
from shared.errors import InvalidWebhookSignature

TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []
        self.intents: dict[str, PaymentIntent] = {}
        self._idempotency: dict[str, str] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        """Configure refund behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    # -------------------------------------------------------------------
    # PaymentGateway
    # -------------------------------------------------------------------
    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount": amount,
                "currency": currency,
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
            }
        )
        if idempotency_key in self._idempotency:
            return self.intents[self._idempotency[idempotency_key]]

        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        intent = PaymentIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        self._idempotency[idempotency_key] = intent_id
        return intent

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        self.calls.append({"method": "retrieve_payment_intent", "payment_intent_id": payment_intent_id})
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise ObjectNotFoundError({"payment_intent_id": [f"Payment intent {payment_intent_id} not found"]})
        return intent

    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        if signature != TEST_SIGNATURE:
            raise InvalidWebhookSignature()
        try:
            return parse_event(json.loads(payload))
        except (ValueError, KeyError) as exc:
            raise InvalidWebhookSignature({"payload": ["Malformed webhook payload"]}) from exc

    def create_refund(
        self,
        payment_intent_id: str,
        amount: int | None,
        reason: str,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "payment_intent_id": payment_intent_id,
                "amount": amount,
                "reason": reason,
            }
        )
        if self.should_succeed:
            return RefundResult(
                success=True,
                gateway_refund_id=f"re_fake_{uuid4().hex[:12]}",
                gateway_status="succeeded",
            )
        return RefundResult(
            success=False,
            gateway_status="failed",
            failure_reason=self.failure_reason,
        )

    # -------------------------------------------------------------------
    # Simulation helpers
    # -------------------------------------------------------------------
    def _set_status(self, payment_intent_id: str, status: str, error: str | None = None) -> PaymentIntent:
        current = self.retrieve_payment_intent(payment_intent_id)
        updated = PaymentIntent(
            id=current.id,
            status=status,
            amount=current.amount,
            currency=current.currency,
            client_secret=current.client_secret,
            metadata=current.metadata,
            last_payment_error=error,
        )
        self.intents[payment_intent_id] = updated
        return updated

    def succeed_intent(self, payment_intent_id: str) -> PaymentIntent:
        return self._set_status(payment_intent_id, SUCCEEDED)

    def fail_intent(self, payment_intent_id: str, message: str = "Your card was declined.") -> PaymentIntent:
        return self._set_status(payment_intent_id, "requires_payment_method", error=message)

    def cancel_intent(self, payment_intent_id: str) -> PaymentIntent:
        return self._set_status(payment_intent_id, CANCELED)

    def event_payload(self, event_type: str, payment_intent_id: str, event_id: str | None = None) -> bytes:
        """Serialize a webhook body for an intent, as the provider would send it."""
        intent = self.intents.get(payment_intent_id)
        if event_type.startswith("charge.dispute"):
            data = {
                "id": f"dp_fake_{uuid4().hex[:12]}",
                "object": "dispute",
                "payment_intent": payment_intent_id,
                "reason": "fraudulent",
                "amount": intent.amount if intent else None,
            }
        else:
            data = {
                "id": payment_intent_id,
                "object": "payment_intent",
                "status": intent.status if intent else None,
                "amount": intent.amount if intent else None,
                "metadata": dict(intent.metadata) if intent else {},
            }
            if intent and intent.last_payment_error:
                data["last_payment_error"] = {"code": "card_declined", "message": intent.last_payment_error}
        event = {
            "id": event_id or f"evt_fake_{uuid4().hex[:16]}",
            "type": event_type,
            "data": {"object": data},
        }
        return json.dumps(event).encode()

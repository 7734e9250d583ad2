"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and StripeGateway
(production) without changing any checkout or reconciliation code.

Amounts are integer minor units (cents). Statuses use the provider's
vocabulary: requires_payment_method, requires_confirmation, requires_action,
processing, succeeded, canceled.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

SUCCEEDED = "succeeded"
CANCELED = "canceled"

# Provider event types consumed by reconciliation
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
PAYMENT_CANCELED = "payment_intent.canceled"
DISPUTE_CREATED = "charge.dispute.created"


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    last_payment_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass(frozen=True)
class ProviderEvent:
    """A verified webhook event."""

    id: str
    type: str
    payment_intent_id: str | None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def metadata(self) -> dict[str, str]:
        return dict(self.data.get("metadata") or {})

    @property
    def failure_message(self) -> str | None:
        error = self.data.get("last_payment_error") or {}
        return error.get("message")

    @property
    def failure_code(self) -> str | None:
        error = self.data.get("last_payment_error") or {}
        return error.get("code")


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


def parse_event(payload: dict[str, Any]) -> ProviderEvent:
    """Build a ProviderEvent from a decoded webhook body."""
    data = (payload.get("data") or {}).get("object") or {}
    if data.get("object") == "payment_intent":
        payment_intent_id = data.get("id")
    else:
        # Charges and disputes point back at their payment intent
        payment_intent_id = data.get("payment_intent")
    return ProviderEvent(
        id=payload["id"],
        type=payload["type"],
        payment_intent_id=payment_intent_id,
        data=data,
    )


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        """Create a payment intent the client can confirm."""
        ...

    @abstractmethod
    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """Fetch the provider's current view of an intent."""
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        """Verify a webhook signature and decode the event.

        Raises InvalidWebhookSignature when the payload is not authentic.
        """
        ...

    @abstractmethod
    def create_refund(
        self,
        payment_intent_id: str,
        amount: int | None,
        reason: str,
    ) -> RefundResult:
        """Refund a succeeded payment intent (fully when amount is None)."""
        ...

"""Error taxonomy for checkout, stock and order handling.

Malformed input is rejected with Protean's ``ValidationError`` and missing
records with ``ObjectNotFoundError``. The errors below cover the rest: each
carries a ``messages`` dict (field -> list of messages) and an HTTP
``status_code`` so the API layer can translate it without knowing the
individual types.
"""

from typing import Any


class DomainError(Exception):
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, messages: dict[str, list[str]] | None = None, **details: Any) -> None:
        self.messages = messages or {}
        self.details = details
        super().__init__(self.message)

    @property
    def message(self) -> str:
        for field_messages in self.messages.values():
            if field_messages:
                return field_messages[0]
        return self.default_message

    def to_dict(self) -> dict[str, Any]:
        return {**self.details, "messages": self.messages} if self.messages else dict(self.details)


class InsufficientStock(DomainError):
    status_code = 409

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            {"quantity": [f"Only {available} unit(s) of {product_id} available"]},
            product_id=product_id,
            requested=requested,
            available=available,
        )


class BasketUnavailable(DomainError):
    """Checkout refused because basket lines can no longer be sold."""

    status_code = 409

    def __init__(self, unavailable_items: list[dict[str, Any]]) -> None:
        self.unavailable_items = unavailable_items
        super().__init__(
            {"basket": ["Some items are no longer available"]},
            unavailable_items=unavailable_items,
        )


class ZoneNotServed(DomainError):
    status_code = 422

    def __init__(self, postal_code: str) -> None:
        self.postal_code = postal_code
        super().__init__(
            {"postal_code": [f"Delivery is not available for postal code {postal_code}"]},
            postal_code=postal_code,
        )


class PaymentNotSucceeded(DomainError):
    """The provider has not (yet) reported the payment as succeeded."""

    status_code = 400

    def __init__(self, payment_intent_id: str, status: str) -> None:
        self.payment_intent_id = payment_intent_id
        self.status = status
        super().__init__(
            {"payment": [f"Payment not completed (status: {status})"]},
            payment_intent_id=payment_intent_id,
            payment_status=status,
        )


class DuplicateOrder(DomainError):
    """An order for this payment intent was committed by a concurrent caller."""

    status_code = 409

    def __init__(self, payment_intent_id: str) -> None:
        self.payment_intent_id = payment_intent_id
        super().__init__({"payment_intent_id": ["Order already exists"]}, payment_intent_id=payment_intent_id)


class UnfulfillableOrder(DomainError):
    """The payment succeeded but the order cannot be created. Needs a refund."""

    status_code = 409

    def __init__(self, payment_intent_id: str, reason: str, shortfalls: list[dict[str, Any]] | None = None) -> None:
        self.payment_intent_id = payment_intent_id
        self.reason = reason
        self.shortfalls = shortfalls or []
        super().__init__(
            {"order": ["Order could not be completed, refund in progress"]},
            payment_intent_id=payment_intent_id,
            reason=reason,
            shortfalls=self.shortfalls,
        )


class InvalidTransition(DomainError):
    status_code = 409
    default_message = "Transition not allowed"


class ConcurrentModification(DomainError):
    status_code = 409
    default_message = "Resource was modified concurrently, retry the request"


class InvalidWebhookSignature(DomainError):
    status_code = 400
    default_message = "Invalid webhook signature"


class PaymentProviderError(DomainError):
    status_code = 502
    default_message = "Payment provider request failed"


class AuthenticationRequired(DomainError):
    status_code = 401
    default_message = "Authentication required"

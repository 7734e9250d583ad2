"""Payment intent orchestration.

Turns the customer's basket into a provider payment intent:

1. The basket must exist and hold at least one line.
2. Every line's product must still be for sale. Units already sit in the
   basket's reservation, so on-hand stock is not consulted again here.
3. The delivery address must fall in an active zone.
4. Only then is the provider called, with ``amount`` equal to the quoted
   total and metadata naming basket, customer, address and substitution
   preference.

The quote is stored as a CheckoutSnapshot keyed by the intent id.
"""

import json
from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.exceptions import ValidationError

from delivery.geocoding import Geocoder, get_geocoder
from delivery.info import delivery_info
from inventory.stock.adjustment import for_sale
from ordering.basket.basket import BasketOwner
from ordering.basket.management import find_basket
from ordering.checkout.address import AddressInput, save_address
from ordering.checkout.snapshot import RecordCheckoutSnapshot, lines_from_basket, record_snapshot
from payments.gateway import get_gateway
from shared.config import get_settings
from shared.errors import BasketUnavailable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutIntent:
    payment_intent_id: str
    client_secret: str | None
    status: str
    subtotal_cents: int
    delivery_fee_cents: int
    total_cents: int
    currency: str
    zone_name: str
    eta_band: str


def intent_metadata(basket_id: str, customer_id: str, address_id: str, substitution_allowed: bool) -> dict[str, str]:
    """Provider metadata; values must be strings."""
    return {
        "basketId": basket_id,
        "customerId": customer_id,
        "addressId": address_id,
        "substitutionAllowed": "true" if substitution_allowed else "false",
    }


def create_intent(
    customer_id: str,
    address: AddressInput,
    substitution_allowed: bool = False,
    now: datetime | None = None,
    geocoder: Geocoder | None = None,
) -> CheckoutIntent:
    settings = get_settings()

    basket = find_basket(BasketOwner(customer_id=customer_id))
    if basket is None or basket.is_empty:
        raise ValidationError({"basket": ["Basket is empty"]})
    basket_id = str(basket.id)
    lines = lines_from_basket(basket)

    sellable = for_sale(line["product_id"] for line in lines)
    unavailable = [
        {"product_id": line["product_id"], "name": line["name"], "reason": "out_of_stock"}
        for line in lines
        if line["product_id"] not in sellable
    ]
    if unavailable:
        logger.info("checkout_refused_unavailable", basket_id=basket_id, items=unavailable)
        raise BasketUnavailable(unavailable)

    priced = delivery_info(address.postal_code, basket.subtotal_cents, now)

    geocode = (geocoder or get_geocoder()).geocode(address.to_query())
    address_id = save_address(customer_id, address, geocode)

    metadata = intent_metadata(basket_id, customer_id, address_id, substitution_allowed)
    idempotency_key = (
        f"checkout-{basket_id}-v{basket.revision}-{address_id}"
        f"-{priced.total_cents}-{metadata['substitutionAllowed']}"
    )
    intent = get_gateway().create_payment_intent(
        amount=priced.total_cents,
        currency=settings.currency,
        metadata=metadata,
        idempotency_key=idempotency_key,
    )

    record_snapshot(
        RecordCheckoutSnapshot(
            payment_intent_id=intent.id,
            basket_id=basket_id,
            basket_revision=basket.revision,
            customer_id=customer_id,
            address_id=address_id,
            substitution_allowed=substitution_allowed,
            lines=json.dumps(lines),
            subtotal_cents=priced.subtotal_cents,
            delivery_fee_cents=priced.fee_cents,
            total_cents=priced.total_cents,
            currency=settings.currency,
            zone_name=priced.zone_name,
            eta_band=priced.eta_band,
        )
    )

    logger.info(
        "payment_intent_created",
        payment_intent_id=intent.id,
        basket_id=basket_id,
        amount=priced.total_cents,
        delivery_fee=priced.fee_cents,
    )
    return CheckoutIntent(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        status=intent.status,
        subtotal_cents=priced.subtotal_cents,
        delivery_fee_cents=priced.fee_cents,
        total_cents=priced.total_cents,
        currency=settings.currency,
        zone_name=priced.zone_name,
        eta_band=priced.eta_band,
    )

"""Delivery pricing.

Pure functions over zones and an explicit ``now``: the same inputs always
give the same quote. Amounts are integer cents.
"""

import re
from collections.abc import Iterable
from datetime import datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Integer, String

from delivery.domain import delivery
from delivery.zone import DeliveryZone, EtaBand
from shared.errors import ZoneNotServed

POSTAL_CODE_PATTERN = re.compile(r"^\d{4}$")


@delivery.value_object
class DeliveryQuote:
    zone_name = String(required=True, max_length=120)
    postal_code = String(required=True, max_length=4)
    subtotal_cents = Integer(default=0, min_value=0)
    fee_cents = Integer(default=0, min_value=0)
    total_cents = Integer(default=0, min_value=0)
    free_threshold_cents = Integer(default=0, min_value=0)
    eta_band = String(required=True, max_length=40)

    @invariant.post
    def total_is_subtotal_plus_fee(self):
        if self.total_cents != self.subtotal_cents + self.fee_cents:
            raise ValidationError({"total_cents": ["Total must equal subtotal plus delivery fee"]})

    @property
    def is_free_delivery(self) -> bool:
        return self.fee_cents == 0


def validate_postal_code(postal_code: str) -> str:
    postal_code = (postal_code or "").strip()
    if not POSTAL_CODE_PATTERN.match(postal_code):
        raise ValidationError({"postal_code": ["Postal code must be 4 digits"]})
    return postal_code


def resolve_zone(postal_code: str, zones: Iterable[DeliveryZone]) -> DeliveryZone:
    postal_code = validate_postal_code(postal_code)
    for zone in zones:
        if zone.serves(postal_code):
            return zone
    raise ZoneNotServed(postal_code)


def delivery_fee(subtotal_cents: int, zone: DeliveryZone) -> int:
    """Free delivery from the threshold (inclusive) upwards."""
    return 0 if subtotal_cents >= zone.free_threshold_cents else zone.fee_cents


def eta_band(now: datetime, bands: Iterable[EtaBand]) -> str:
    """First window whose cutoff is still ahead today; else the first window tomorrow."""
    ordered = sorted(bands, key=lambda band: band.cutoff_time)
    if not ordered:
        raise ValidationError({"eta_bands": ["Zone has no delivery windows configured"]})
    current = now.time()
    for band in ordered:
        if current < band.cutoff_time:
            return band.label
    return ordered[0].label


def quote(postal_code: str, subtotal_cents: int, zones: Iterable[DeliveryZone], now: datetime) -> DeliveryQuote:
    if subtotal_cents < 0:
        raise ValidationError({"subtotal": ["Subtotal cannot be negative"]})
    zone = resolve_zone(postal_code, zones)
    fee = delivery_fee(subtotal_cents, zone)
    return DeliveryQuote(
        zone_name=zone.name,
        postal_code=postal_code.strip(),
        subtotal_cents=subtotal_cents,
        fee_cents=fee,
        total_cents=subtotal_cents + fee,
        free_threshold_cents=zone.free_threshold_cents,
        eta_band=eta_band(now, zone.bands()),
    )

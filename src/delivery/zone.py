"""Delivery zones: which postal codes the store serves, at what fee."""

import json
from datetime import time

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, Integer, String, Text

from delivery.domain import delivery


@delivery.value_object
class EtaBand:
    """Orders placed before ``cutoff`` (store time, HH:MM) are delivered in window ``label``."""

    cutoff = String(required=True, max_length=5)
    label = String(required=True, max_length=40)

    @invariant.post
    def cutoff_must_be_a_clock_time(self):
        try:
            time.fromisoformat(self.cutoff)
        except (TypeError, ValueError):
            raise ValidationError({"cutoff": [f"{self.cutoff!r} is not a HH:MM time"]}) from None

    @property
    def cutoff_time(self) -> time:
        return time.fromisoformat(self.cutoff)

    def to_dict(self) -> dict:
        return {"cutoff": self.cutoff, "label": self.label}


DEFAULT_ETA_BANDS = (
    {"cutoff": "12:00", "label": "12:00-13:00"},
    {"cutoff": "16:00", "label": "16:00-17:00"},
    {"cutoff": "20:00", "label": "20:00-21:00"},
)


@delivery.aggregate(schema_name="delivery_zones")
class DeliveryZone:
    name = String(required=True, max_length=120)
    postal_codes = Text(required=True)  # JSON array of 4-digit codes
    fee_cents = Integer(required=True, min_value=0)
    free_threshold_cents = Integer(required=True, min_value=0)
    eta_bands = Text()  # JSON: [{"cutoff": "12:00", "label": "12:00-13:00"}, ...]
    is_active = Boolean(default=True)

    @classmethod
    def create(cls, name, postal_codes, fee_cents, free_threshold_cents, eta_bands=None, is_active=True):
        bands = [EtaBand(**band).to_dict() for band in (eta_bands or DEFAULT_ETA_BANDS)]
        return cls(
            name=name,
            postal_codes=json.dumps(sorted(set(postal_codes))),
            fee_cents=fee_cents,
            free_threshold_cents=free_threshold_cents,
            eta_bands=json.dumps(bands),
            is_active=is_active,
        )

    @property
    def codes(self) -> frozenset[str]:
        return frozenset(json.loads(self.postal_codes))

    def bands(self) -> list[EtaBand]:
        raw = json.loads(self.eta_bands) if self.eta_bands else DEFAULT_ETA_BANDS
        return [EtaBand(**band) for band in raw]

    def serves(self, postal_code: str) -> bool:
        return bool(self.is_active) and postal_code in self.codes

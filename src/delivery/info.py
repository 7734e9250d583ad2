"""Zone management and delivery lookups.

Lookups push the delivery domain context themselves, so checkout code in
other contexts can quote a postal code without switching domains.
"""

import json
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog
from protean import handle
from protean.fields import Integer, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.pricing import DeliveryQuote, quote
from delivery.zone import DeliveryZone
from shared.config import get_settings

logger = structlog.get_logger(__name__)


@delivery.command(part_of="DeliveryZone")
class AddDeliveryZone:
    name = String(required=True, max_length=120)
    postal_codes = Text(required=True)  # JSON array
    fee_cents = Integer(required=True, min_value=0)
    free_threshold_cents = Integer(required=True, min_value=0)
    eta_bands = Text()  # JSON array of {cutoff, label}


@delivery.command_handler(part_of=DeliveryZone)
class DeliveryZoneHandler:
    @handle(AddDeliveryZone)
    def add_zone(self, command):
        zone = DeliveryZone.create(
            name=command.name,
            postal_codes=json.loads(command.postal_codes),
            fee_cents=command.fee_cents,
            free_threshold_cents=command.free_threshold_cents,
            eta_bands=json.loads(command.eta_bands) if command.eta_bands else None,
        )
        current_domain.repository_for(DeliveryZone).add(zone)
        logger.info("delivery_zone_added", zone_id=str(zone.id), name=zone.name)
        return str(zone.id)


def store_now() -> datetime:
    """Wall-clock time at the store; ETA bands are defined in local time."""
    return datetime.now(ZoneInfo(get_settings().timezone))


def active_zones() -> list[DeliveryZone]:
    with delivery.domain_context():
        repo = current_domain.repository_for(DeliveryZone)
        return repo._dao.query.filter(is_active=True).order_by("name").all().items


def delivery_info(postal_code: str, subtotal_cents: int = 0, now: datetime | None = None) -> DeliveryQuote:
    return quote(postal_code, subtotal_cents, active_zones(), now or store_now())


def add_zone(
    name: str,
    postal_codes: list[str],
    fee_cents: int,
    free_threshold_cents: int,
    eta_bands: list[dict] | None = None,
) -> str:
    command = AddDeliveryZone(
        name=name,
        postal_codes=json.dumps(list(postal_codes)),
        fee_cents=fee_cents,
        free_threshold_cents=free_threshold_cents,
        eta_bands=json.dumps(eta_bands) if eta_bands else None,
    )
    with delivery.domain_context():
        return current_domain.process(command, asynchronous=False)

"""Customer delivery addresses."""

from datetime import UTC, datetime

import structlog
from protean import handle, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, String
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError

from delivery.geocoding import AddressQuery, GeocodeResult
from delivery.pricing import validate_postal_code
from ordering.domain import ordering
from shared.db import uow_session

logger = structlog.get_logger(__name__)


@ordering.value_object
class AddressInput:
    """The delivery address as the customer typed it."""

    street = String(required=True, max_length=200)
    number = String(required=True, max_length=20)
    postal_code = String(required=True, max_length=4)
    city = String(required=True, max_length=100)
    apartment = String(max_length=20)

    @invariant.post
    def address_parts_must_not_be_blank(self):
        errors = {}
        for field_name, label in (("street", "Street"), ("number", "House number"), ("city", "City")):
            if not (getattr(self, field_name) or "").strip():
                errors[field_name] = [f"{label} is required"]
        if errors:
            raise ValidationError(errors)
        validate_postal_code(self.postal_code)

    def to_query(self) -> AddressQuery:
        return AddressQuery(street=self.street, number=self.number, postal_code=self.postal_code, city=self.city)


@ordering.aggregate(schema_name="addresses")
class Address:
    customer_id = Identifier(required=True)
    street = String(required=True, max_length=200)
    number = String(required=True, max_length=20)
    apartment = String(max_length=20)
    postal_code = String(required=True, max_length=4)
    city = String(required=True, max_length=100)
    formatted_address = String(max_length=300)
    lat = Float()
    lng = Float()
    updated_at = DateTime()

    def apply(self, command) -> None:
        self.apartment = command.apartment
        self.postal_code = command.postal_code
        self.city = command.city
        # Keep earlier coordinates when the provider was unreachable this time
        if not command.degraded:
            self.formatted_address = command.formatted_address
            self.lat = command.lat
            self.lng = command.lng
        self.updated_at = datetime.now(UTC)


@ordering.command(part_of="Address")
class SaveAddress:
    customer_id = Identifier(required=True)
    street = String(required=True, max_length=200)
    number = String(required=True, max_length=20)
    apartment = String(max_length=20)
    postal_code = String(required=True, max_length=4)
    city = String(required=True, max_length=100)
    formatted_address = String(max_length=300)
    lat = Float()
    lng = Float()
    degraded = Boolean(default=False)


@ordering.command_handler(part_of=Address)
class AddressHandler:
    @handle(SaveAddress)
    def save_address(self, command):
        """Insert or update the customer's address at (street, number)."""
        repo = current_domain.repository_for(Address)
        found = repo._dao.query.filter(
            customer_id=command.customer_id,
            street=command.street,
            number=command.number,
        ).all().items
        if found:
            address = found[0]
        else:
            address = Address(customer_id=command.customer_id, street=command.street, number=command.number)
        address.apply(command)
        repo.add(address)
        uow_session().flush()
        return str(address.id)


def save_address(customer_id: str, data: AddressInput, geocode: GeocodeResult) -> str:
    command = SaveAddress(
        customer_id=customer_id,
        street=data.street,
        number=data.number,
        apartment=data.apartment,
        postal_code=data.postal_code,
        city=data.city,
        formatted_address=geocode.formatted_address,
        lat=geocode.lat,
        lng=geocode.lng,
        degraded=geocode.degraded,
    )
    try:
        return current_domain.process(command, asynchronous=False)
    except IntegrityError:
        # A concurrent checkout inserted the same address; update that row
        logger.info("address_upsert_race", customer_id=customer_id)
        return current_domain.process(command, asynchronous=False)

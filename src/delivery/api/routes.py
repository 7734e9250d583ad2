"""FastAPI routes for the Delivery context: zone lookups and address checks."""

from fastapi import APIRouter, Query
from protean.exceptions import ValidationError

from delivery.api.schemas import AddressSchema, AddressValidationResponse, DeliveryInfoResponse
from delivery.geocoding import AddressQuery, get_geocoder
from delivery.info import delivery_info

delivery_router = APIRouter(prefix="/checkout", tags=["delivery"])


@delivery_router.get("/delivery-info", response_model=DeliveryInfoResponse)
async def get_delivery_info(postal_code: str = Query(...)) -> DeliveryInfoResponse:
    """Fee, free-delivery threshold and next delivery window for a postal code."""
    info = delivery_info(postal_code)
    return DeliveryInfoResponse(
        zone_name=info.zone_name,
        postal_code=info.postal_code,
        delivery_fee_cents=info.fee_cents,
        free_delivery_threshold_cents=info.free_threshold_cents,
        eta_band=info.eta_band,
    )


@delivery_router.post("/validate-address", response_model=AddressValidationResponse)
async def validate_address(body: AddressSchema) -> AddressValidationResponse:
    info = delivery_info(body.postal_code)
    result = get_geocoder().geocode(
        AddressQuery(street=body.street, number=body.number, postal_code=body.postal_code, city=body.city)
    )
    if not result.valid:
        raise ValidationError({"address": ["Address could not be found"]})
    return AddressValidationResponse(
        valid=True,
        formatted_address=result.formatted_address,
        lat=result.lat,
        lng=result.lng,
        zone_name=info.zone_name,
        delivery_fee_cents=info.fee_cents,
        free_delivery_threshold_cents=info.free_threshold_cents,
    )

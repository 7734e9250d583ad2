"""Pydantic request/response schemas for the Delivery API."""

from pydantic import BaseModel, Field


class AddressSchema(BaseModel):
    street: str = Field(min_length=1, max_length=200)
    number: str = Field(min_length=1, max_length=20)
    apartment: str | None = Field(default=None, max_length=20)
    postal_code: str = Field(pattern=r"^\d{4}$")
    city: str = Field(min_length=1, max_length=100)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "street": "Rue Neuve",
                    "number": "12",
                    "apartment": None,
                    "postal_code": "1000",
                    "city": "Brussels",
                }
            ]
        }
    }


class DeliveryInfoResponse(BaseModel):
    zone_name: str
    postal_code: str
    delivery_fee_cents: int
    free_delivery_threshold_cents: int
    eta_band: str


class AddressValidationResponse(BaseModel):
    valid: bool
    formatted_address: str | None = None
    lat: float | None = None
    lng: float | None = None
    zone_name: str
    delivery_fee_cents: int
    free_delivery_threshold_cents: int

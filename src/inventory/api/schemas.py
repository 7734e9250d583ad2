"""Pydantic request/response schemas for the Inventory API."""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class RegisterProductRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    unit_price_cents: int = Field(ge=0)
    initial_stock: int = Field(default=0, ge=0)
    size: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Jonagold apples",
                    "unit_price_cents": 349,
                    "initial_stock": 40,
                    "size": "1kg",
                }
            ]
        }
    }


class ReceiveStockRequest(BaseModel):
    quantity: int = Field(gt=0)


class SetAvailabilityRequest(BaseModel):
    is_available: bool


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class ProductIdResponse(BaseModel):
    product_id: str


class ProductResponse(BaseModel):
    product_id: str
    name: str
    size: str | None = None
    unit_price_cents: int
    is_available: bool
    on_hand: int
    in_stock: bool


class StatusResponse(BaseModel):
    status: str

"""FastAPI routes for the Inventory context: products and stock."""

from fastapi import APIRouter
from protean.utils.globals import current_domain

from inventory.api.schemas import (
    ProductIdResponse,
    ProductResponse,
    ReceiveStockRequest,
    RegisterProductRequest,
    SetAvailabilityRequest,
    StatusResponse,
)
from inventory.stock.adjustment import ReceiveStock, RegisterProduct, SetAvailability, product_details

# ---------------------------------------------------------------------------
# Product Router
# ---------------------------------------------------------------------------
product_router = APIRouter(prefix="/products", tags=["inventory"])


@product_router.post("", status_code=201, response_model=ProductIdResponse)
async def create_product(body: RegisterProductRequest) -> ProductIdResponse:
    command = RegisterProduct(
        name=body.name,
        unit_price_cents=body.unit_price_cents,
        initial_stock=body.initial_stock,
        size=body.size,
    )
    product_id = current_domain.process(command, asynchronous=False)
    return ProductIdResponse(product_id=product_id)


@product_router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: str) -> ProductResponse:
    return ProductResponse(**product_details(product_id))


@product_router.post("/{product_id}/stock", response_model=StatusResponse)
async def receive_product_stock(product_id: str, body: ReceiveStockRequest) -> StatusResponse:
    current_domain.process(ReceiveStock(product_id=product_id, quantity=body.quantity), asynchronous=False)
    return StatusResponse(status="stock_received")


@product_router.put("/{product_id}/availability", response_model=StatusResponse)
async def update_availability(product_id: str, body: SetAvailabilityRequest) -> StatusResponse:
    current_domain.process(
        SetAvailability(product_id=product_id, is_available=body.is_available),
        asynchronous=False,
    )
    return StatusResponse(status="available" if body.is_available else "unavailable")

"""Doorstep FastAPI application.

Single-store delivery backend: basket, checkout, provider webhooks and
order tracking. Each request is wrapped in the correct domain context based
on URL prefix. Errors are translated to HTTP responses by the exception
handlers registered below; route handlers never catch them.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError

from shared.config import get_settings
from shared.db import setup_db
from shared.errors import DomainError
from shared.logging import add_context, clear_context, configure_logging

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# PROTEAN_ENV selects the database overlay of each domain.toml; all four
# domains share one database.
from delivery.domain import delivery  # noqa: E402
from inventory.domain import inventory  # noqa: E402
from ordering.domain import ordering  # noqa: E402
from payments.domain import payments  # noqa: E402

DOMAINS = (inventory, delivery, ordering, payments)

for _domain in DOMAINS:
    _domain.init()

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Route-to-domain mapping
# ---------------------------------------------------------------------------
# Longest prefixes first: the delivery lookups live under /checkout
_ROUTE_DOMAIN_MAP = {
    "/products": inventory,
    "/checkout/delivery-info": delivery,
    "/checkout/validate-address": delivery,
    "/checkout": ordering,
    "/basket": ordering,
    "/orders": ordering,
    "/webhooks": payments,
    "/payments": payments,
}


def _resolve_domain(path: str):
    """Return the domain for the given request path, or None."""
    for prefix, domain in _ROUTE_DOMAIN_MAP.items():
        if path.startswith(prefix):
            return domain
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    if settings.env in ("development", "test"):
        for domain in DOMAINS:
            setup_db(domain)
    logger.info("doorstep_started", env=settings.env)
    yield


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Doorstep API",
    description="Single-store grocery delivery: basket, checkout and order tracking",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the correct Protean domain context for each request."""
    domain = _resolve_domain(request.url.path)
    if domain is not None:
        with domain.domain_context():
            response = await call_next(request)
        return response
    # No domain match: health check and docs
    return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind a request id to every log line emitted while serving the request."""
    clear_context()
    request_id = request.headers.get("X-Request-Id") or uuid4().hex
    add_context(request_id=request_id, method=request.method, path=request.url.path)
    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    return response


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
def error_body(request: Request, status: int, message: str, details: dict) -> dict:
    return {
        "error": {
            "message": message,
            "status": status,
            "details": details,
            "path": request.url.path,
            "method": request.method,
        }
    }


def _first_message(messages, default: str) -> str:
    if isinstance(messages, dict):
        for field_messages in messages.values():
            if field_messages:
                return field_messages[0] if isinstance(field_messages, list) else str(field_messages)
    return str(messages) if messages else default


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", error=type(exc).__name__, message=exc.message)
    else:
        logger.info("request_rejected", error=type(exc).__name__, status=exc.status_code, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, exc.message, exc.to_dict()),
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    message = _first_message(exc.messages, "Invalid request")
    logger.info("request_rejected", error="ValidationError", status=400, message=message)
    return JSONResponse(status_code=400, content=error_body(request, 400, message, {"messages": exc.messages}))


@app.exception_handler(ObjectNotFoundError)
async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    message = _first_message(exc.messages, "Not found")
    logger.info("request_rejected", error="ObjectNotFoundError", status=404, message=message)
    return JSONResponse(status_code=404, content=error_body(request, 404, message, {"messages": exc.messages}))


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from delivery.api import delivery_router  # noqa: E402
from inventory.api import product_router  # noqa: E402
from ordering.api import basket_router, checkout_router, order_router  # noqa: E402
from payments.api import gateway_router, webhook_router  # noqa: E402

app.include_router(product_router)
app.include_router(basket_router)
app.include_router(delivery_router)
app.include_router(checkout_router)
app.include_router(order_router)
app.include_router(webhook_router)
app.include_router(gateway_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "env": get_settings().env,
            "domains": {domain.name: {"name": domain.name} for domain in DOMAINS},
        }
    )

"""Ordering API package."""

from ordering.api.routes import basket_router, checkout_router, order_router

__all__ = ["basket_router", "checkout_router", "order_router"]

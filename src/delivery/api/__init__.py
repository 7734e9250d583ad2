from delivery.api.routes import delivery_router

__all__ = ["delivery_router"]

from payments.api.routes import gateway_router, webhook_router

__all__ = ["gateway_router", "webhook_router"]

"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing
- StripeGateway when PAYMENT_GATEWAY=stripe (the only choice in production)
"""

from protean.exceptions import ConfigurationError

from payments.gateway.fake_adapter import FakeGateway
from payments.gateway.port import PaymentGateway
from payments.gateway.stripe_adapter import StripeGateway
from shared.config import get_settings

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway. Defaults to FakeGateway outside production."""
    global _current_gateway
    if _current_gateway is None:
        settings = get_settings()
        if settings.payment_gateway == "stripe":
            _current_gateway = StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
        elif settings.is_production:
            raise ConfigurationError(
                f"PAYMENT_GATEWAY={settings.payment_gateway!r} is not allowed in production; use 'stripe'"
            )
        else:
            _current_gateway = FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None

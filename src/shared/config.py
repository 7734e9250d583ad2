"""Environment-driven settings for the Doorstep services.

Values are read once from the process environment. ``PROTEAN_ENV`` selects
the overlay (development, test, staging, production): the same variable
picks the database section of each context's ``domain.toml``, the log
level and the log renderer.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

LOG_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}


def _env() -> str:
    return (os.getenv("PROTEAN_ENV") or "development").lower()


@dataclass(frozen=True)
class Settings:
    env: str = "development"
    log_level: str = "DEBUG"
    currency: str = "eur"
    payment_gateway: str = "fake"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    google_maps_api_key: str = ""
    geocoding_timeout: float = 5.0
    order_number_prefix: str = "DST"
    timezone: str = "Europe/Brussels"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def renders_json(self) -> bool:
        return self.env in ("production", "staging")

    @classmethod
    def from_env(cls) -> "Settings":
        env = _env()
        return cls(
            env=env,
            log_level=os.getenv("LOG_LEVEL", LOG_LEVELS.get(env, "INFO")).upper(),
            currency=os.getenv("CURRENCY", cls.currency).lower(),
            payment_gateway=os.getenv("PAYMENT_GATEWAY", cls.payment_gateway).lower(),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            google_maps_api_key=os.getenv("GOOGLE_MAPS_API_KEY", ""),
            geocoding_timeout=float(os.getenv("GEOCODING_TIMEOUT", str(cls.geocoding_timeout))),
            order_number_prefix=os.getenv("ORDER_NUMBER_PREFIX", cls.order_number_prefix),
            timezone=os.getenv("STORE_TIMEZONE", cls.timezone),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded on first use."""
    return Settings.from_env()

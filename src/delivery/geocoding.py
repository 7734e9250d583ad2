"""Address geocoding.

Geocoding is advisory: it fills in a formatted address and coordinates when
the provider answers, and accepts the address as typed when it does not
(missing API key, timeouts, transport errors, provider outages).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
import structlog

from shared.config import get_settings

logger = structlog.get_logger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


@dataclass(frozen=True)
class AddressQuery:
    street: str
    number: str
    postal_code: str
    city: str
    country: str = "Belgium"

    def one_line(self) -> str:
        return f"{self.street} {self.number}, {self.postal_code} {self.city}, {self.country}"


@dataclass(frozen=True)
class GeocodeResult:
    valid: bool
    formatted_address: str | None = None
    lat: float | None = None
    lng: float | None = None
    degraded: bool = False


class Geocoder(ABC):
    @abstractmethod
    def geocode(self, address: AddressQuery) -> GeocodeResult: ...


class NullGeocoder(Geocoder):
    """Accepts every address as typed. Used when no provider is configured."""

    def geocode(self, address: AddressQuery) -> GeocodeResult:  # noqa: ARG002
        return GeocodeResult(valid=True, degraded=True)


class GoogleGeocoder(Geocoder):
    def __init__(self, api_key: str, client: httpx.Client | None = None, timeout: float = 5.0) -> None:
        self.api_key = api_key
        self.client = client or httpx.Client(timeout=timeout)

    def geocode(self, address: AddressQuery) -> GeocodeResult:
        try:
            response = self.client.get(
                GOOGLE_GEOCODE_URL,
                params={"address": address.one_line(), "key": self.api_key},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geocoding_unavailable", error=str(exc), postal_code=address.postal_code)
            return GeocodeResult(valid=True, degraded=True)

        status = payload.get("status")
        if status == "ZERO_RESULTS":
            return GeocodeResult(valid=False)
        if status != "OK" or not payload.get("results"):
            logger.warning("geocoding_degraded", provider_status=status, postal_code=address.postal_code)
            return GeocodeResult(valid=True, degraded=True)

        result = payload["results"][0]
        location = result.get("geometry", {}).get("location", {})
        return GeocodeResult(
            valid=True,
            formatted_address=result.get("formatted_address"),
            lat=location.get("lat"),
            lng=location.get("lng"),
        )


_current_geocoder: Geocoder | None = None


def get_geocoder() -> Geocoder:
    """Google geocoder when an API key is configured, otherwise accept-as-typed."""
    global _current_geocoder
    if _current_geocoder is None:
        settings = get_settings()
        if settings.google_maps_api_key:
            _current_geocoder = GoogleGeocoder(settings.google_maps_api_key, timeout=settings.geocoding_timeout)
        else:
            _current_geocoder = NullGeocoder()
    return _current_geocoder


def set_geocoder(geocoder: Geocoder) -> None:
    global _current_geocoder
    _current_geocoder = geocoder


def reset_geocoder() -> None:
    global _current_geocoder
    _current_geocoder = None

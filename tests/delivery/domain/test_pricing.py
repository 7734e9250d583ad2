"""Tests for delivery fee, free-delivery threshold and ETA band selection."""

from datetime import datetime, time

import pytest
from delivery.pricing import delivery_fee, eta_band, quote, resolve_zone, validate_postal_code
from delivery.zone import DEFAULT_ETA_BANDS, DeliveryZone, EtaBand
from protean.exceptions import ValidationError
from shared.errors import ZoneNotServed


def _make_zone(**overrides):
    values = {
        "name": "Brussels Central",
        "postal_codes": ["1000", "1050"],
        "fee_cents": 399,
        "free_threshold_cents": 4000,
    }
    values.update(overrides)
    return DeliveryZone.create(**values)


MORNING = datetime(2024, 3, 4, 9, 30)
DEFAULT_BANDS = [EtaBand(**band) for band in DEFAULT_ETA_BANDS]


class TestDeliveryFee:
    def test_below_threshold_pays_fee(self):
        assert delivery_fee(3800, _make_zone()) == 399

    def test_threshold_is_inclusive(self):
        assert delivery_fee(4000, _make_zone()) == 0

    def test_above_threshold_is_free(self):
        assert delivery_fee(4200, _make_zone()) == 0


class TestQuote:
    def test_total_includes_fee_below_threshold(self):
        priced = quote("1000", 3800, [_make_zone()], MORNING)
        assert priced.fee_cents == 399
        assert priced.total_cents == 4199
        assert priced.zone_name == "Brussels Central"
        assert priced.is_free_delivery is False

    def test_total_equals_subtotal_above_threshold(self):
        priced = quote("1050", 4200, [_make_zone()], MORNING)
        assert priced.fee_cents == 0
        assert priced.total_cents == 4200
        assert priced.is_free_delivery is True

    def test_negative_subtotal_rejected(self):
        with pytest.raises(ValidationError):
            quote("1000", -1, [_make_zone()], MORNING)

    def test_same_inputs_same_quote(self):
        zones = [_make_zone()]
        assert quote("1000", 3800, zones, MORNING) == quote("1000", 3800, zones, MORNING)


class TestZoneResolution:
    def test_unserved_postal_code(self):
        with pytest.raises(ZoneNotServed) as exc:
            resolve_zone("9000", [_make_zone()])
        assert exc.value.postal_code == "9000"
        assert exc.value.status_code == 422

    def test_inactive_zone_does_not_serve(self):
        with pytest.raises(ZoneNotServed):
            resolve_zone("1000", [_make_zone(is_active=False)])

    def test_first_matching_zone_wins(self):
        inner = _make_zone(name="Centre", postal_codes=["1000"], fee_cents=199)
        outer = _make_zone(name="Outer", postal_codes=["1000", "1200"])
        assert resolve_zone("1000", [inner, outer]).name == "Centre"

    @pytest.mark.parametrize("postal_code", ["100", "10000", "1OOO", "", None])
    def test_malformed_postal_code(self, postal_code):
        with pytest.raises(ValidationError):
            validate_postal_code(postal_code)

    def test_postal_code_is_trimmed(self):
        assert validate_postal_code(" 1000 ") == "1000"


class TestEtaBand:
    @pytest.mark.parametrize(
        ("clock", "expected"),
        [
            (time(8, 0), "12:00-13:00"),
            (time(11, 59), "12:00-13:00"),
            (time(12, 0), "16:00-17:00"),
            (time(15, 30), "16:00-17:00"),
            (time(19, 59), "20:00-21:00"),
            (time(20, 0), "12:00-13:00"),
            (time(23, 45), "12:00-13:00"),
        ],
    )
    def test_default_bands(self, clock, expected):
        now = datetime.combine(MORNING.date(), clock)
        assert eta_band(now, DEFAULT_BANDS) == expected

    def test_bands_are_sorted_by_cutoff(self):
        bands = [EtaBand(cutoff="18:00", label="evening"), EtaBand(cutoff="10:00", label="morning")]
        assert eta_band(datetime(2024, 3, 4, 9, 0), bands) == "morning"
        assert eta_band(datetime(2024, 3, 4, 19, 0), bands) == "morning"

    def test_cutoff_must_be_a_clock_time(self):
        with pytest.raises(ValidationError):
            EtaBand(cutoff="25:99", label="never")

    def test_zone_without_custom_bands_uses_defaults(self):
        assert [band.label for band in _make_zone().bands()] == [band["label"] for band in DEFAULT_ETA_BANDS]

    def test_no_bands_configured(self):
        with pytest.raises(ValidationError):
            eta_band(MORNING, [])

import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Select the configuration environment before any domain or settings
    module is imported; both read ``PROTEAN_ENV`` once.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ.setdefault("PAYMENT_GATEWAY", "fake")
    os.environ.pop("GOOGLE_MAPS_API_KEY", None)

    from shared.config import get_settings

    get_settings.cache_clear()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------
@pytest.fixture(scope="session", autouse=True)
def beds():
    """One DomainFixture per context; all four share the test database."""
    from delivery.domain import delivery
    from inventory.domain import inventory
    from ordering.domain import ordering
    from payments.domain import payments
    from protean.integrations.pytest import DomainFixture

    from shared.db import drop_db, setup_db

    domains = (inventory, delivery, ordering, payments)
    fixtures = {}
    for domain in domains:
        bed = DomainFixture(domain)
        bed.setup()
        setup_db(domain)
        fixtures[domain.name] = bed

    yield fixtures

    for domain in reversed(domains):
        drop_db(domain)
        fixtures[domain.name].teardown()


@pytest.fixture(autouse=True)
def run_around_tests(beds):
    """Fixture to automatically cleanup infrastructure after every test"""
    yield

    from protean import current_domain

    for bed in beds.values():
        with bed.domain_context():
            # Clear all databases
            for _, provider in current_domain.providers.items():
                provider._data_reset()

            # Drain event stores
            current_domain.event_store.store._data_reset()


@pytest.fixture()
def gateway():
    from payments.gateway import reset_gateway, set_gateway
    from payments.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture(autouse=True)
def geocoder():
    from delivery.geocoding import NullGeocoder, reset_geocoder, set_geocoder

    null = NullGeocoder()
    set_geocoder(null)
    yield null
    reset_geocoder()


# ---------------------------------------------------------------------------
# Catalogue and zone
# ---------------------------------------------------------------------------
@pytest.fixture()
def zone():
    """Brussels centre: €3.99 delivery, free from €40."""
    from delivery.info import add_zone

    return add_zone(
        name="Brussels Central",
        postal_codes=["1000", "1050"],
        fee_cents=399,
        free_threshold_cents=4000,
    )


@pytest.fixture()
def make_product():
    from inventory.domain import inventory
    from inventory.stock.adjustment import RegisterProduct

    def _make_product(name="Whole milk", unit_price_cents=1900, stock=10, size="1L"):
        with inventory.domain_context():
            return inventory.process(
                RegisterProduct(name=name, unit_price_cents=unit_price_cents, initial_stock=stock, size=size),
                asynchronous=False,
            )

    return _make_product


@pytest.fixture()
def product(make_product):
    """€19.00 per unit; two units make the €38 basket."""
    return make_product()


@pytest.fixture()
def stock():
    """Read a product's counters: ``stock(product_id) -> (on_hand, capacity)``."""
    from inventory.domain import inventory
    from inventory.stock.product import Product

    def _stock(product_id):
        with inventory.domain_context():
            found = inventory.repository_for(Product).get(product_id)
        return found.on_hand, found.capacity

    return _stock


@pytest.fixture()
def address():
    from ordering.checkout.address import AddressInput

    return AddressInput(street="Rue Neuve", number="12", postal_code="1000", city="Brussels")


@pytest.fixture()
def client(gateway):
    from fastapi.testclient import TestClient

    from app import app

    return TestClient(app)


@pytest.fixture()
def checkout(gateway, zone, product, address):
    """Fill a customer's basket and open a payment intent for it.

    With ``succeed`` the customer's card is charged at the fake provider,
    but no order exists yet: that is what confirm and the webhook do.
    """
    from ordering.basket.basket import BasketOwner
    from ordering.basket.management import add_line
    from ordering.checkout.intent import create_intent
    from ordering.domain import ordering

    def _checkout(customer_id="cust-001", quantity=2, product_id=None, succeed=True):
        with ordering.domain_context():
            add_line(BasketOwner(customer_id=customer_id), product_id or product, quantity)
            intent = create_intent(customer_id, address)
        if succeed:
            gateway.succeed_intent(intent.payment_intent_id)
        return intent

    return _checkout


@pytest.fixture()
def paid_order(checkout):
    """An order materialized from a succeeded checkout."""
    from ordering.order.materialization import materialize

    def _paid_order(**kwargs):
        intent = checkout(**kwargs)
        return materialize(intent.payment_intent_id)

    return _paid_order

"""Shared BDD fixtures and step definitions for checkout scenarios."""

import pytest
from delivery.info import add_zone
from ordering.basket import management
from ordering.basket.basket import BasketOwner
from pytest_bdd import given, parsers

CUSTOMER = BasketOwner(customer_id="cust-001")


@pytest.fixture()
def products():
    """Product ids by name, for the scenario at hand."""
    return {}


@pytest.fixture()
def outcome():
    """Whatever the When steps produced: intent, order, webhook results."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
ZONE_STEP = "the store delivers to postal code {postal_code} for a fee of {fee:d} cents, free from {threshold:d} cents"


@given(parsers.cfparse(ZONE_STEP))
def delivery_zone(postal_code, fee, threshold):
    add_zone(
        name="Brussels Central",
        postal_codes=[postal_code],
        fee_cents=fee,
        free_threshold_cents=threshold,
    )


@given(parsers.cfparse('a product "{name}" priced {price:d} cents with {stock:d} in stock'))
def product_in_stock(make_product, products, name, price, stock):
    products[name] = make_product(name=name, unit_price_cents=price, stock=stock)


@given(parsers.cfparse('the customer has {quantity:d} "{name}" in the basket'))
def basket_line(products, quantity, name):
    management.add_line(CUSTOMER, products[name], quantity)

"""Shared BDD fixtures and step definitions for stock scenarios."""

import pytest
from ordering.basket import management
from ordering.basket.basket import BasketOwner
from ordering.domain import ordering
from pytest_bdd import given, parsers

CUSTOMER = BasketOwner(customer_id="cust-001")


@pytest.fixture()
def products():
    """Product ids by name, for the scenario at hand."""
    return {}


@pytest.fixture()
def outcome():
    """Additions that went through and the refusals raised."""
    return {"added": [], "refused": []}


@pytest.fixture()
def add_to_basket():
    """Basket changes run in the ordering context."""

    def _add(owner, product_id, quantity):
        with ordering.domain_context():
            return management.add_line(owner, product_id, quantity)

    return _add


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a product "{name}" priced {price:d} cents with {stock:d} in stock'))
def product_in_stock(make_product, products, name, price, stock):
    products[name] = make_product(name=name, unit_price_cents=price, stock=stock)


@given(parsers.cfparse('the customer has {quantity:d} "{name}" in the basket'))
def basket_line(add_to_basket, products, quantity, name):
    add_to_basket(CUSTOMER, products[name], quantity)

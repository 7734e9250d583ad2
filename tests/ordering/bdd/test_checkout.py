"""BDD tests for checkout to order."""

from ordering.basket.basket import BasketOwner
from ordering.checkout.address import AddressInput
from ordering.checkout.intent import create_intent
from ordering.order.materialization import find_order, materialize
from ordering.order.order import Order
from payments.gateway.fake_adapter import TEST_SIGNATURE
from payments.webhook.reconciliation import handle_event
from protean import current_domain
from pytest_bdd import parsers, scenarios, then, when

CUSTOMER = BasketOwner(customer_id="cust-001")

scenarios("features/checkout.feature")


def _deliver(gateway, event_type, payment_intent_id, event_id=None):
    payload = gateway.event_payload(event_type, payment_intent_id, event_id)
    return handle_event(gateway.construct_event(payload, TEST_SIGNATURE))


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse("the customer checks out to postal code {postal_code}"))
def customer_checks_out(outcome, postal_code):
    address = AddressInput(street="Rue Neuve", number="12", postal_code=postal_code, city="Brussels")
    outcome["intent"] = create_intent(CUSTOMER.customer_id, address)


@when("the customer pays")
def customer_pays(gateway, outcome):
    gateway.succeed_intent(outcome["intent"].payment_intent_id)


@when("the customer confirms")
def customer_confirms(outcome):
    outcome["order"] = materialize(outcome["intent"].payment_intent_id)


@when("the customer pays and confirms")
def customer_pays_and_confirms(gateway, outcome):
    customer_pays(gateway, outcome)
    customer_confirms(outcome)


@when("the provider reports the payment succeeded")
def provider_reports_success(gateway, outcome):
    outcome["webhook"] = _deliver(gateway, "payment_intent.succeeded", outcome["intent"].payment_intent_id)


@when("the provider reports the payment succeeded twice with the same event")
def provider_reports_success_twice(gateway, outcome):
    payment_intent_id = outcome["intent"].payment_intent_id
    outcome["webhook"] = _deliver(gateway, "payment_intent.succeeded", payment_intent_id, "evt_bdd_1")
    outcome["redelivery"] = _deliver(gateway, "payment_intent.succeeded", payment_intent_id, "evt_bdd_1")


@when("the provider reports the payment failed")
def provider_reports_failure(gateway, outcome):
    outcome["webhook"] = _deliver(gateway, "payment_intent.payment_failed", outcome["intent"].payment_intent_id)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse("the payment intent amount is {amount:d} cents"))
def intent_amount(gateway, outcome, amount):
    intent = outcome["intent"]
    assert intent.total_cents == amount
    assert gateway.intents[intent.payment_intent_id].amount == amount


@then(parsers.cfparse("the order delivery fee is {fee:d} cents"))
def order_fee(outcome, fee):
    assert outcome["order"].delivery_fee_cents == fee


@then(parsers.cfparse("the order total is {total:d} cents"))
def order_total(outcome, total):
    assert outcome["order"].total_cents == total


@then("exactly one order exists for the payment")
def one_order(outcome):
    repo = current_domain.repository_for(Order)
    found = repo._dao.query.filter(payment_intent_id=outcome["intent"].payment_intent_id).all()
    assert found.total == 1


@then("the confirmation returns the order created by the webhook")
def same_order(outcome):
    assert str(outcome["order"].id) == outcome["webhook"].order_id


@then("the second delivery is acknowledged as a duplicate")
def duplicate_acknowledged(outcome):
    assert outcome["webhook"].duplicate is False
    assert outcome["redelivery"].duplicate is True


@then("the failure is recorded as an anomaly")
def anomaly_recorded(outcome):
    assert outcome["webhook"].anomaly is True


@then(parsers.cfparse('the order is "{status}" and "{payment_status}"'))
def order_state(outcome, status, payment_status):
    order = find_order(outcome["intent"].payment_intent_id)
    assert order.status == status
    assert order.payment_status == payment_status


@then(parsers.cfparse('"{name}" has {quantity:d} in stock'))
def product_stock(products, stock, name, quantity):
    assert stock(products[name])[0] == quantity

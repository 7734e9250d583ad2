"""Integration tests for the checkout flow over HTTP: intent, payment, confirmation."""

from ordering.order.materialization import find_order
from payments.gateway.fake_adapter import TEST_SIGNATURE

CUSTOMER = {"X-Customer-Id": "cust-001"}
ADDRESS = {"street": "Rue Neuve", "number": "12", "postal_code": "1000", "city": "Brussels"}


def _fill_basket(client, product_id, quantity=2):
    response = client.post("/basket/lines", json={"product_id": product_id, "quantity": quantity}, headers=CUSTOMER)
    assert response.status_code == 201


def _create_intent(client, **overrides):
    payload = {"address": ADDRESS, "substitution_allowed": False}
    payload.update(overrides)
    return client.post("/checkout/payment-intents", json=payload, headers=CUSTOMER)


def _pay(client, payment_intent_id, outcome="succeeded"):
    response = client.post(f"/payments/gateway/intents/{payment_intent_id}", json={"outcome": outcome})
    assert response.status_code == 200
    return response.json()


def _send_webhook(client, gateway, event_type, payment_intent_id, event_id=None):
    return client.post(
        "/webhooks/payments",
        content=gateway.event_payload(event_type, payment_intent_id, event_id),
        headers={"Stripe-Signature": TEST_SIGNATURE, "Content-Type": "application/json"},
    )


class TestCreatePaymentIntent:
    def test_fee_below_threshold(self, client, zone, product):
        _fill_basket(client, product)
        response = _create_intent(client)
        assert response.status_code == 201
        body = response.json()
        assert body["subtotal_cents"] == 3800
        assert body["delivery_fee_cents"] == 399
        assert body["total_cents"] == 4199
        assert body["client_secret"].startswith(body["payment_intent_id"])

    def test_sign_in_required(self, client, zone, product):
        response = client.post("/checkout/payment-intents", json={"address": ADDRESS})
        assert response.status_code == 401

    def test_empty_basket(self, client, zone):
        assert _create_intent(client).status_code == 400

    def test_address_outside_zone(self, client, zone, product):
        _fill_basket(client, product)
        response = _create_intent(client, address={**ADDRESS, "postal_code": "9000"})
        assert response.status_code == 422

    def test_unavailable_item(self, client, zone, product):
        _fill_basket(client, product)
        client.put(f"/products/{product}/availability", json={"is_available": False})
        response = _create_intent(client)
        assert response.status_code == 409
        items = response.json()["error"]["details"]["unavailable_items"]
        assert items == [{"product_id": product, "name": "Whole milk", "reason": "out_of_stock"}]


class TestConfirm:
    def test_confirm_after_payment(self, client, zone, product):
        _fill_basket(client, product)
        intent = _create_intent(client).json()
        _pay(client, intent["payment_intent_id"])

        response = client.post(
            "/checkout/confirm",
            json={"payment_intent_id": intent["payment_intent_id"]},
            headers=CUSTOMER,
        )
        assert response.status_code == 200
        order = response.json()
        assert order["status"] == "CONFIRMED"
        assert order["payment_status"] == "PAID"
        assert order["total_cents"] == intent["total_cents"] == 4199
        assert order["delivery_fee_cents"] == 399
        assert client.get("/basket", headers=CUSTOMER).json()["item_count"] == 0

    def test_confirm_before_payment(self, client, zone, product):
        _fill_basket(client, product)
        intent = _create_intent(client).json()
        response = client.post(
            "/checkout/confirm",
            json={"payment_intent_id": intent["payment_intent_id"]},
            headers=CUSTOMER,
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["payment_status"] == "requires_payment_method"

    def test_confirm_twice_returns_same_order(self, client, zone, product):
        _fill_basket(client, product)
        intent = _create_intent(client).json()
        _pay(client, intent["payment_intent_id"])
        body = {"payment_intent_id": intent["payment_intent_id"]}
        first = client.post("/checkout/confirm", json=body, headers=CUSTOMER).json()
        second = client.post("/checkout/confirm", json=body, headers=CUSTOMER).json()
        assert first["order_id"] == second["order_id"]

    def test_confirm_by_other_customer_creates_nothing(self, client, zone, product):
        _fill_basket(client, product)
        intent = _create_intent(client).json()
        _pay(client, intent["payment_intent_id"])

        response = client.post(
            "/checkout/confirm",
            json={"payment_intent_id": intent["payment_intent_id"]},
            headers={"X-Customer-Id": "cust-999"},
        )
        assert response.status_code == 404
        assert find_order(intent["payment_intent_id"]) is None
        assert client.get("/basket", headers=CUSTOMER).json()["item_count"] == 2

    def test_webhook_first_then_confirm(self, client, gateway, zone, product):
        _fill_basket(client, product)
        intent = _create_intent(client).json()
        _pay(client, intent["payment_intent_id"])

        webhook = _send_webhook(client, gateway, "payment_intent.succeeded", intent["payment_intent_id"])
        assert webhook.status_code == 200
        assert webhook.json()["outcome"] == "order_confirmed"

        confirm = client.post(
            "/checkout/confirm",
            json={"payment_intent_id": intent["payment_intent_id"]},
            headers=CUSTOMER,
        )
        assert confirm.json()["order_id"] == webhook.json()["order_id"]

    def test_unfulfillable_confirm_requests_refund(self, client, gateway, zone, make_product):
        product_id = make_product(stock=2)
        _fill_basket(client, product_id, 2)
        intent = _create_intent(client).json()
        _pay(client, intent["payment_intent_id"])
        # the basket gives its units up and another customer takes them
        client.delete("/basket", headers=CUSTOMER)
        client.post(
            "/basket/lines",
            json={"product_id": product_id, "quantity": 2},
            headers={"X-Customer-Id": "cust-002"},
        )

        response = client.post(
            "/checkout/confirm",
            json={"payment_intent_id": intent["payment_intent_id"]},
            headers=CUSTOMER,
        )
        assert response.status_code == 409
        assert response.json()["error"]["message"] == "Order could not be completed, refund in progress"

        state = client.get(f"/checkout/payment-intents/{intent['payment_intent_id']}", headers=CUSTOMER)
        assert state.json()["state"] == "refund_in_progress"


class TestCheckoutState:
    def test_polling_until_confirmed(self, client, gateway, zone, product):
        _fill_basket(client, product)
        intent = _create_intent(client).json()
        url = f"/checkout/payment-intents/{intent['payment_intent_id']}"
        assert client.get(url, headers=CUSTOMER).json()["state"] == "pending"

        _pay(client, intent["payment_intent_id"])
        _send_webhook(client, gateway, "payment_intent.succeeded", intent["payment_intent_id"])

        body = client.get(url, headers=CUSTOMER).json()
        assert body["state"] == "confirmed"
        assert body["order_number"].startswith("DST-")

    def test_declined_card(self, client, zone, product):
        _fill_basket(client, product)
        intent = _create_intent(client).json()
        _pay(client, intent["payment_intent_id"], outcome="failed")
        body = client.get(f"/checkout/payment-intents/{intent['payment_intent_id']}", headers=CUSTOMER).json()
        assert body["state"] == "failed"

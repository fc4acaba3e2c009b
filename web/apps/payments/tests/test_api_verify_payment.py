"""API tests for ``GET /api/payments/verify/``.

The gateway is the in-process stub (or a monkeypatched failing client); the
orders, cart and email side effects are real.
"""
import uuid

import pytest

from apps.orders.models import CartItemModel, OrderModel
from apps.payments import providers
from apps.payments.adapters import RecordingEmailSender
from apps.payments.domain import PaymentOutcome
from apps.payments.errors import ConfigurationError, UpstreamError
from apps.payments.views import EMAIL_WARNING, NOT_FOUND_WARNING, NOT_PAYABLE_WARNING, UNCONFIRMED_WARNING

URL = "/api/payments/verify/"


class FailingGateway:
    def __init__(self, exc):
        self.exc = exc

    def verify(self, reference):
        raise self.exc

    def initialize(self, order, email):
        raise self.exc


@pytest.mark.django_db
def test_verify_confirms_order_end_to_end(client, stub_gateway, make_order, make_cart, mailoutbox):
    """Order ORD-1001 for R 500.00 is paid with TXN-9: confirmed, cart cleared, one email."""
    uid = uuid.uuid4()
    order = make_order(total_cents=50000, user_id=uid)
    make_cart(uid)
    assert order.order_number == "ORD-1001"
    stub_gateway.register("TXN-9", PaymentOutcome.SUCCESS, order_id=str(order.id), amount=50000)

    r = client.get(URL, {"reference": "TXN-9"})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "success"
    assert body["amount"] == 50000
    assert body["order_id"] == str(order.id)
    assert body["reconciliation"] == "transitioned"
    assert "warning" not in body
    order.refresh_from_db()
    assert order.status == "confirmed"
    assert order.payment_status == "paid"
    assert order.payment_reference == "TXN-9"
    assert CartItemModel.objects.filter(user_id=uid).count() == 0
    assert len(mailoutbox) == 1
    assert mailoutbox[0].subject == "Order Confirmation - ORD-1001"


@pytest.mark.django_db
def test_verify_twice_is_idempotent(client, stub_gateway, make_order, mailoutbox):
    order = make_order()
    stub_gateway.register("TXN-9", PaymentOutcome.SUCCESS, order_id=str(order.id), amount=50000)
    client.get(URL, {"reference": "TXN-9"})
    r = client.get(URL, {"reference": "TXN-9"})
    assert r.status_code == 200
    assert r.json()["reconciliation"] == "already_paid"
    assert len(mailoutbox) == 1


@pytest.mark.django_db
def test_missing_reference_is_400(client):
    r = client.get(URL)
    assert r.status_code == 400
    assert r.json()["error"] == "MISSING_REFERENCE"


@pytest.mark.django_db
def test_missing_gateway_secret_is_500(client, monkeypatch):
    monkeypatch.setattr(
        providers, "get_gateway_client", lambda: FailingGateway(ConfigurationError("PAYMENTS_GATEWAY_SECRET_KEY is not set"))
    )
    r = client.get(URL, {"reference": "TXN-9"})
    assert r.status_code == 500
    assert r.json()["error"] == "PAYMENTS_NOT_CONFIGURED"


@pytest.mark.django_db
def test_gateway_failure_is_502_with_warning(client, monkeypatch, make_order):
    order = make_order()
    monkeypatch.setattr(providers, "get_gateway_client", lambda: FailingGateway(UpstreamError("GATEWAY_TIMEOUT")))
    r = client.get(URL, {"reference": "TXN-9", "order_id": str(order.id)})
    assert r.status_code == 502
    body = r.json()
    assert body["detail"] == "GATEWAY_TIMEOUT"
    assert body["warning"] == UNCONFIRMED_WARNING
    order.refresh_from_db()
    assert order.payment_status == "pending"


@pytest.mark.django_db
def test_failed_payment_leaves_order_pending(client, stub_gateway, make_order, mailoutbox):
    order = make_order()
    stub_gateway.register("TXN-9", PaymentOutcome.FAILURE, order_id=str(order.id))
    r = client.get(URL, {"reference": "TXN-9"})
    assert r.status_code == 200
    assert r.json()["status"] == "failed"
    assert r.json()["reconciliation"] == "not_successful"
    order.refresh_from_db()
    assert order.payment_status == "pending"
    assert mailoutbox == []


@pytest.mark.django_db
def test_pending_payment_warns(client, stub_gateway, make_order):
    order = make_order()
    stub_gateway.register("TXN-9", PaymentOutcome.PENDING, order_id=str(order.id))
    r = client.get(URL, {"reference": "TXN-9"})
    assert r.status_code == 200
    assert r.json()["warning"] == UNCONFIRMED_WARNING


@pytest.mark.django_db
def test_untagged_transaction_never_pays_the_order_in_the_query(client, stub_gateway, make_order, mailoutbox):
    order = make_order(total_cents=500000)
    stub_gateway.register("TXN-UNTAGGED", PaymentOutcome.SUCCESS, amount=100)
    r = client.get(URL, {"reference": "TXN-UNTAGGED", "order_id": str(order.id)})
    assert r.status_code == 200
    body = r.json()
    assert body["warning"] == NOT_FOUND_WARNING
    assert "reconciliation" not in body
    assert "order_id" not in body
    order.refresh_from_db()
    assert order.payment_status == "pending"
    assert order.payment_reference is None
    assert mailoutbox == []


@pytest.mark.django_db
def test_query_order_id_must_match_tagged_order(client, stub_gateway, make_order):
    tagged, other = make_order(), make_order()
    stub_gateway.register("TXN-9", PaymentOutcome.SUCCESS, order_id=str(tagged.id))
    r = client.get(URL, {"reference": "TXN-9", "order_id": str(other.id)})
    assert r.status_code == 200
    assert r.json()["warning"] == NOT_FOUND_WARNING
    assert "reconciliation" not in r.json()
    assert OrderModel.objects.filter(payment_status="paid").count() == 0

    r = client.get(URL, {"reference": "TXN-9", "order_id": str(tagged.id)})
    assert r.json()["reconciliation"] == "transitioned"
    tagged.refresh_from_db()
    assert tagged.payment_reference == "TXN-9"


@pytest.mark.django_db
def test_unknown_order_warns(client, stub_gateway):
    stub_gateway.register("TXN-9", PaymentOutcome.SUCCESS, order_id=str(uuid.uuid4()))
    r = client.get(URL, {"reference": "TXN-9"})
    assert r.status_code == 200
    assert r.json()["warning"] == NOT_FOUND_WARNING


@pytest.mark.django_db
def test_reference_conflict_is_409(client, stub_gateway, make_order, mailoutbox):
    order = make_order()
    stub_gateway.register("TXN-9", PaymentOutcome.SUCCESS, order_id=str(order.id))
    stub_gateway.register("TXN-10", PaymentOutcome.SUCCESS, order_id=str(order.id))
    client.get(URL, {"reference": "TXN-9"})
    r = client.get(URL, {"reference": "TXN-10"})
    assert r.status_code == 409
    assert r.json()["error"] == "REFERENCE_CONFLICT"
    assert OrderModel.objects.get(pk=order.pk).payment_reference == "TXN-9"
    assert len(mailoutbox) == 1


@pytest.mark.django_db
def test_email_failure_still_confirms_with_warning(client, stub_gateway, make_order, monkeypatch):
    monkeypatch.setattr(providers, "get_email_sender", lambda: RecordingEmailSender(fail=True))
    order = make_order()
    stub_gateway.register("TXN-9", PaymentOutcome.SUCCESS, order_id=str(order.id))
    r = client.get(URL, {"reference": "TXN-9"})
    assert r.status_code == 200
    assert r.json()["reconciliation"] == "transitioned"
    assert r.json()["warning"] == EMAIL_WARNING
    order.refresh_from_db()
    assert order.payment_status == "paid"


@pytest.mark.django_db
def test_verify_for_cancelled_order_warns_and_leaves_it(client, stub_gateway, make_order, mailoutbox):
    order = make_order(status="cancelled")
    stub_gateway.register("TXN-9", PaymentOutcome.SUCCESS, order_id=str(order.id))
    r = client.get(URL, {"reference": "TXN-9"})
    assert r.status_code == 200
    assert r.json()["reconciliation"] == "not_payable"
    assert r.json()["warning"] == NOT_PAYABLE_WARNING
    order.refresh_from_db()
    assert (order.status, order.payment_status) == ("cancelled", "pending")
    assert mailoutbox == []

"""Unit tests for ``HttpGatewayClient``.

``httpx.Client.get``/``post`` are monkeypatched so no network is used; the
tests assert parsing, retry, timeout and circuit-breaker behaviour.
"""
import httpx
import pytest

from apps.orders.domain import Order, OrderStatus, PaymentStatus
from apps.payments.domain import PaymentOutcome
from apps.payments.errors import ConfigurationError, UpstreamError
from apps.payments.gateway import CircuitBreaker, CircuitState, HttpGatewayClient, normalize_outcome


class DummyResp:
    """Minimal httpx-like response stub.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | None): JSON body to return from ``json()``.
    """
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


def _verify_body(status="success", order_id="0d7a4c43-6d2b-4c7e-9a0a-2b1c3d4e5f60"):
    return {
        "status": True,
        "message": "Verification successful",
        "data": {
            "status": status,
            "reference": "TXN-9",
            "amount": 50000,
            "currency": "ZAR",
            "metadata": {"order_id": order_id, "customer_email": "meta@example.com"},
            "customer": {"email": "payer@example.com"},
        },
    }


def _client(**kw):
    kw.setdefault("base_url", "http://gateway.test")
    kw.setdefault("secret_key", "sk_test_123")
    kw.setdefault("breaker", CircuitBreaker("test", fail_threshold=3, reset_timeout=60))
    return HttpGatewayClient(**kw)


@pytest.mark.parametrize("raw,expected", [
    ("success", PaymentOutcome.SUCCESS),
    ("SUCCEEDED", PaymentOutcome.SUCCESS),
    ("failed", PaymentOutcome.FAILURE),
    ("abandoned", PaymentOutcome.FAILURE),
    ("ongoing", PaymentOutcome.PENDING),
    ("", PaymentOutcome.PENDING),
])
def test_normalize_outcome(raw, expected):
    assert normalize_outcome(raw) == expected


def test_verify_parses_transaction(monkeypatch):
    seen = {}

    def fake_get(self, url, headers=None, **kw):
        seen["url"], seen["headers"] = url, headers
        return DummyResp(200, _verify_body())

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    res = _client().verify("TXN-9")
    assert seen["url"] == "http://gateway.test/transaction/verify/TXN-9"
    assert seen["headers"]["Authorization"] == "Bearer sk_test_123"
    assert res.outcome == PaymentOutcome.SUCCESS
    assert res.amount == 50000
    assert res.order_id == "0d7a4c43-6d2b-4c7e-9a0a-2b1c3d4e5f60"
    assert res.metadata["customer_email"] == "meta@example.com"
    assert res.customer_email == "payer@example.com"


def test_verify_tolerates_missing_metadata(monkeypatch):
    body = _verify_body()
    body["data"]["metadata"] = ""
    body["data"].pop("customer")
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, body))
    res = _client().verify("TXN-9")
    assert res.order_id is None and res.customer_email is None


def test_missing_secret_is_configuration_error(monkeypatch):
    def fake_get(self, url, headers=None, **kw):  # pragma: no cover - must not be reached
        raise AssertionError("network called")

    monkeypatch.setattr(httpx.Client, "get", fake_get)
    with pytest.raises(ConfigurationError):
        _client(secret_key="").verify("TXN-9")


def test_not_found_is_upstream_error_without_retry(monkeypatch):
    calls = {"n": 0}

    def fake_get(self, url, headers=None, **kw):
        calls["n"] += 1
        return DummyResp(404, {"status": False, "message": "Transaction reference not found"})

    monkeypatch.setattr(httpx.Client, "get", fake_get)
    with pytest.raises(UpstreamError) as ei:
        _client().verify("nope")
    assert ei.value.status_code == 404
    assert ei.value.message == "Transaction reference not found"
    assert calls["n"] == 1


def test_server_errors_are_retried_then_succeed(monkeypatch):
    answers = [DummyResp(503, {}), DummyResp(502, {}), DummyResp(200, _verify_body())]
    seen_retry_counts = []

    def fake_get(self, url, headers=None, **kw):
        seen_retry_counts.append(headers["X-Retry-Count"])
        return answers.pop(0)

    monkeypatch.setattr(httpx.Client, "get", fake_get)
    res = _client().verify("TXN-9")
    assert res.outcome == PaymentOutcome.SUCCESS
    assert seen_retry_counts == ["0", "1", "2"]


def test_connect_errors_exhaust_retries(monkeypatch, settings):
    settings.PAYMENTS_HTTP_RETRY_MAX = 2
    calls = {"n": 0}

    def fake_get(self, url, headers=None, **kw):
        calls["n"] += 1
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "get", fake_get)
    with pytest.raises(UpstreamError) as ei:
        _client().verify("TXN-9")
    assert ei.value.message == "GATEWAY_UNREACHABLE"
    assert calls["n"] == 2


def test_timeout_is_not_retried(monkeypatch):
    calls = {"n": 0}

    def fake_get(self, url, headers=None, **kw):
        calls["n"] += 1
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(httpx.Client, "get", fake_get)
    with pytest.raises(UpstreamError) as ei:
        _client().verify("TXN-9")
    assert ei.value.message == "GATEWAY_TIMEOUT"
    assert calls["n"] == 1


def test_non_json_body_is_upstream_error(monkeypatch):
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, None))
    with pytest.raises(UpstreamError) as ei:
        _client().verify("TXN-9")
    assert ei.value.message == "INVALID_GATEWAY_RESPONSE"


def test_circuit_opens_after_repeated_failures(monkeypatch, settings):
    settings.PAYMENTS_HTTP_RETRY_MAX = 1
    calls = {"n": 0}

    def fake_get(self, url, headers=None, **kw):
        calls["n"] += 1
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "get", fake_get)
    client = _client()
    for _ in range(3):
        with pytest.raises(UpstreamError):
            client.verify("TXN-9")
    assert client.breaker.state == CircuitState.OPEN

    with pytest.raises(UpstreamError) as ei:
        client.verify("TXN-9")
    assert ei.value.message == "CIRCUIT_OPEN"
    assert calls["n"] == 3


def test_half_open_probe_closes_circuit(monkeypatch):
    breaker = CircuitBreaker("test", fail_threshold=1, reset_timeout=0)
    breaker.on_failure()
    assert breaker.state == CircuitState.HALF_OPEN
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, _verify_body()))
    _client(breaker=breaker).verify("TXN-9")
    assert breaker.state == CircuitState.CLOSED


def test_initialize_tags_metadata(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen["url"], seen["json"] = url, json
        return DummyResp(200, {
            "status": True,
            "message": "Authorization URL created",
            "data": {"authorization_url": "https://pay.test/abc", "access_code": "abc", "reference": "TXN-9"},
        })

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    order = Order(
        id="0d7a4c43-6d2b-4c7e-9a0a-2b1c3d4e5f60", order_number="ORD-1001",
        status=OrderStatus.PENDING, payment_status=PaymentStatus.PENDING, total_cents=50000,
    )
    session = _client().initialize(order, "buyer@example.com")
    assert seen["url"] == "http://gateway.test/transaction/initialize"
    assert seen["json"]["amount"] == 50000
    assert seen["json"]["metadata"] == {
        "order_id": order.id, "order_number": "ORD-1001", "customer_email": "buyer@example.com",
    }
    assert session.reference == "TXN-9"
    assert session.authorization_url == "https://pay.test/abc"

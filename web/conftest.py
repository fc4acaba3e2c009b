"""Shared fixtures for the storefront test suite.

Every test runs against the in-process gateway stub, the locmem email
backend and known payment secrets. Process-wide state (the gateway circuit
breaker, throttle counters) is reset around each test.
"""

import pytest

WEBHOOK_SECRET = "whsec_test"
GATEWAY_SECRET = "sk_test_123"


@pytest.fixture(autouse=True)
def payments_settings(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.PAYMENTS_GATEWAY_SECRET_KEY = GATEWAY_SECRET
    settings.PAYMENTS_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.PAYMENTS_EMAIL_BACKEND = "django"
    settings.PAYMENTS_HTTP_RETRY_BACKOFF_BASE = 0
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    return settings


@pytest.fixture(autouse=True)
def reset_shared_state():
    from django.core.cache import cache

    from apps.payments.gateway import _gateway_cb

    cache.clear()
    _gateway_cb.reset()
    yield
    _gateway_cb.reset()


@pytest.fixture
def stub_gateway(monkeypatch):
    """A fresh ``GatewayStub`` served by ``providers.get_gateway_client``."""
    from apps.payments import providers
    from apps.payments.adapters import GatewayStub

    stub = GatewayStub()
    monkeypatch.setattr(providers, "_stub_gateway", stub)
    return stub


@pytest.fixture
def make_order(db):
    """Create an ``OrderModel`` with optional items.

    ``items`` is a list of dicts with ``name``, ``quantity``,
    ``unit_price_cents`` and any bulk-pricing fields.
    """
    from apps.orders.models import OrderItemModel, OrderModel, ProductModel

    def _make(total_cents=50000, user_id=None, customer_email="buyer@example.com", items=(), **fields):
        order = OrderModel.objects.create(
            total_cents=total_cents, user_id=user_id, customer_email=customer_email, **fields
        )
        for item in items:
            item = dict(item)
            product = ProductModel.objects.create(name=item.pop("name", "Tee"))
            OrderItemModel.objects.create(order=order, product=product, **item)
        return order

    return _make


@pytest.fixture
def make_cart(db):
    from apps.orders.models import CartItemModel, ProductModel

    def _make(user_id, count=2):
        for i in range(count):
            product = ProductModel.objects.create(name=f"Cart item {i}")
            CartItemModel.objects.create(user_id=user_id, product=product)

    return _make

"""Service provider helpers for wiring the reconciliation core.

Views never construct adapters themselves; they ask these factories, which
tests replace with ``monkeypatch``. ``settings.USE_HTTP_ADAPTERS`` selects the
``httpx`` gateway client; when it is false a process-wide ``GatewayStub`` is
used so initialize → verify round trips work locally.
"""

from django.conf import settings

from apps.orders.domain import OrderStatus
from apps.orders.repository import CartRepository, OrderRepository

from .adapters import GatewayStub
from .domain import EmailSenderPort, GatewayPort
from .emails import DjangoEmailSender, ResendEmailClient
from .gateway import HttpGatewayClient
from .reconciliation import ReconciliationEngine
from .side_effects import SideEffectDispatcher

_stub_gateway = GatewayStub()


def get_gateway_client() -> GatewayPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpGatewayClient()
    return _stub_gateway


def get_email_sender() -> EmailSenderPort:
    if getattr(settings, "PAYMENTS_EMAIL_BACKEND", "django") == "resend":
        return ResendEmailClient()
    return DjangoEmailSender()


def get_reconciliation_engine() -> ReconciliationEngine:
    """Return an engine wired to the ORM stores and the configured email sender."""
    dispatcher = SideEffectDispatcher(cart=CartRepository(), email=get_email_sender())
    return ReconciliationEngine(OrderRepository(), dispatcher, default_paid_status=OrderStatus.PROCESSING)


def verify_paid_status() -> OrderStatus:
    return OrderStatus(getattr(settings, "PAYMENTS_VERIFY_PAID_STATUS", OrderStatus.CONFIRMED.value))


def webhook_paid_status() -> OrderStatus:
    return OrderStatus(getattr(settings, "PAYMENTS_WEBHOOK_PAID_STATUS", OrderStatus.PROCESSING.value))

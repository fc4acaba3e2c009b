"""In-process stub adapters for the payments ports.

``GatewayStub`` implements ``GatewayPort`` without network calls and
``RecordingEmailSender`` implements ``EmailSenderPort`` by keeping messages
in memory. They back local development (``USE_HTTP_ADAPTERS=false``) and
unit tests where a deterministic gateway is useful.
"""

import threading
import uuid
from typing import Dict, List, Optional

from django.conf import settings

from apps.orders.domain import Order

from .domain import CheckoutSession, EmailMessage, EmailResult, EmailSenderPort, GatewayPort, PaymentOutcome, VerificationResult
from .errors import UpstreamError


class GatewayStub(GatewayPort):
    """Deterministic gateway.

    ``initialize`` approves payments with a positive amount (the transaction
    is immediately ``success``) and declines the rest. ``register`` seeds
    arbitrary transactions for tests. Unknown references answer like the
    real gateway's 404.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._transactions: Dict[str, VerificationResult] = {}
        self.verify_calls = 0

    def register(self, reference: str, outcome: PaymentOutcome = PaymentOutcome.SUCCESS,
                 order_id: Optional[str] = None, amount: int = 0,
                 customer_email: Optional[str] = None,
                 metadata_email: Optional[str] = None) -> VerificationResult:
        metadata = {}
        if order_id:
            metadata["order_id"] = str(order_id)
        if metadata_email:
            metadata["customer_email"] = metadata_email
        result = VerificationResult(
            outcome=PaymentOutcome(outcome),
            amount=amount,
            reference=reference,
            metadata=metadata,
            customer_email=customer_email,
            gateway_status={"success": "success", "failure": "failed"}.get(PaymentOutcome(outcome).value, "ongoing"),
        )
        with self._lock:
            self._transactions[reference] = result
        return result

    def verify(self, reference: str) -> VerificationResult:
        with self._lock:
            self.verify_calls += 1
            found = self._transactions.get(reference)
        if found is None:
            raise UpstreamError("Transaction reference not found", status_code=404)
        return found

    def initialize(self, order: Order, email: str) -> CheckoutSession:
        reference = f"stub_{uuid.uuid4().hex}"
        outcome = PaymentOutcome.SUCCESS if order.total_cents > 0 else PaymentOutcome.FAILURE
        self.register(reference, outcome, order_id=order.id, amount=order.total_cents, metadata_email=email)
        callback = getattr(settings, "PAYMENTS_CALLBACK_URL", "")
        return CheckoutSession(
            reference=reference,
            authorization_url=f"{callback}?order_id={order.id}&reference={reference}",
        )


class RecordingEmailSender(EmailSenderPort):
    """Keeps sent messages in ``outbox``; ``fail=True`` simulates an outage."""

    def __init__(self, fail: bool = False):
        self._lock = threading.Lock()
        self.fail = fail
        self.outbox: List[EmailMessage] = []
        self.attempts = 0

    def send(self, message: EmailMessage) -> EmailResult:
        with self._lock:
            self.attempts += 1
            if self.fail:
                return EmailResult(success=False, error="EMAIL_SEND_FAILED")
            self.outbox.append(message)
            return EmailResult(success=True, message_id=f"msg_{len(self.outbox)}")

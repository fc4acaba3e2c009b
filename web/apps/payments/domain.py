"""Domain types and ports for payment confirmation.

The reconciliation core consumes normalized gateway results
(``VerificationResult``) and emits ``ReconciliationResult`` values; the
gateway and email providers are reached only through the ports below.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol

from apps.orders.domain import Order

from .errors import SideEffectError


# ---- Enums ----
class PaymentOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


class ReconciliationStatus(str, Enum):
    """What a single ``confirm_payment`` call did.

    TRANSITIONED is returned to exactly one caller per order; every other
    successful call observes ALREADY_PAID. NOT_PAYABLE means the order had
    already left ``pending`` unpaid (cancelled by an administrator, for
    instance) and was not touched.
    """

    TRANSITIONED = "transitioned"
    ALREADY_PAID = "already_paid"
    NOT_SUCCESSFUL = "not_successful"
    NOT_PAYABLE = "not_payable"


# ---- DTOs ----
@dataclass(frozen=True)
class VerificationResult:
    """Normalized answer of the gateway's verification endpoint.

    Attributes:
        outcome: success, failure or pending.
        amount: Amount in minor units as reported by the gateway.
        reference: Gateway transaction reference.
        metadata: Metadata tagged at initiation; carries ``order_id``.
        customer_email: Email the gateway holds for the payer, if any.
        gateway_status: Raw gateway status string, kept for logs and the
            verify response.
    """

    outcome: PaymentOutcome
    amount: int
    reference: str
    metadata: dict = field(default_factory=dict)
    customer_email: Optional[str] = None
    gateway_status: str = ""

    @property
    def order_id(self) -> Optional[str]:
        value = self.metadata.get("order_id")
        return str(value) if value else None


@dataclass(frozen=True)
class CheckoutSession:
    reference: str
    authorization_url: str
    access_code: Optional[str] = None


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SideEffectReport:
    """Outcome of one post-payment side effect."""

    name: str
    success: bool
    detail: Optional[str] = None
    error: Optional[SideEffectError] = None


@dataclass(frozen=True)
class ReconciliationResult:
    status: ReconciliationStatus
    order: Optional[Order] = None
    side_effects: List[SideEffectReport] = field(default_factory=list)

    @property
    def paid(self) -> bool:
        return self.status in (ReconciliationStatus.TRANSITIONED, ReconciliationStatus.ALREADY_PAID)

    @property
    def side_effects_ok(self) -> bool:
        return all(r.success for r in self.side_effects)


# ---- Ports (DIP) ----
class GatewayPort(Protocol):
    """Port over the third-party payment gateway."""

    def verify(self, reference: str) -> VerificationResult:
        """Query the gateway for the outcome of ``reference``.

        Raises:
            ConfigurationError: When gateway credentials are missing.
            UpstreamError: When the gateway call fails or times out.
        """
        raise NotImplementedError()

    def initialize(self, order: Order, email: str) -> CheckoutSession:
        """Start a payment for ``order`` tagged with its id in metadata."""
        raise NotImplementedError()


class EmailSenderPort(Protocol):
    def send(self, message: EmailMessage) -> EmailResult:
        """Deliver ``message``. Must report failures in the result, not raise."""
        raise NotImplementedError()

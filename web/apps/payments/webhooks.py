"""Inbound gateway webhooks: signature verification and event extraction.

The gateway signs the raw request body with HMAC-SHA256 using the shared
``PAYMENTS_WEBHOOK_SECRET`` and sends the hex digest in the signature header.
The signature is checked against the exact bytes received, before the body
is parsed, with a constant-time comparison.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from pydantic import ValidationError

from .errors import ConfigurationError, MalformedEventError, SignatureError
from .schemas import WebhookEvent, WebhookPayment

logger = logging.getLogger("payments")


@dataclass(frozen=True)
class PaymentSignal:
    """A payment-success notification ready for the reconciliation engine."""

    order_id: str
    reference: str
    customer_email: Optional[str] = None
    amount: int = 0
    event_id: Optional[str] = None


def sign(raw_body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``raw_body``; used by tests and the sandbox."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """Check ``signature`` against ``raw_body``.

    Raises:
        ConfigurationError: When the webhook secret is not configured.
        SignatureError: When the signature is missing or does not match.
    """
    if not secret:
        logger.error("webhook secret is not configured")
        raise ConfigurationError("PAYMENTS_WEBHOOK_SECRET is not set")
    if not signature:
        raise SignatureError("MISSING_SIGNATURE")
    expected = sign(raw_body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise SignatureError()


def parse_event(raw_body: bytes) -> WebhookEvent:
    """Decode a webhook body into its envelope (``id``, ``type``, raw payload).

    Raises:
        MalformedEventError: When the body is not JSON or has no event type.
    """
    try:
        data = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedEventError("INVALID_JSON") from e
    try:
        return WebhookEvent.model_validate(data)
    except ValidationError as e:
        raise MalformedEventError("INVALID_EVENT") from e


def extract_payment(event: WebhookEvent, success_types: Iterable[str]) -> Optional[PaymentSignal]:
    """Turn a success event into a ``PaymentSignal``.

    Returns:
        None for event types that are not payment successes, whatever their
        payload looks like; those are acknowledged without action.

    Raises:
        MalformedEventError: When a success event has no valid payment
            payload or no ``order_id`` in its metadata.
    """
    if event.type not in set(success_types):
        return None
    try:
        payment = WebhookPayment.model_validate(event.payload)
    except ValidationError as e:
        raise MalformedEventError("INVALID_PAYMENT") from e
    if not payment.metadata.order_id:
        raise MalformedEventError("MISSING_ORDER_ID")
    return PaymentSignal(
        order_id=payment.metadata.order_id,
        reference=payment.id,
        customer_email=payment.metadata.customer_email,
        amount=payment.amount,
        event_id=event.id,
    )

"""Order confirmation email: composition and delivery.

Composition renders Django templates (``payments/order_confirmation.*``) from
an ``Order`` snapshot, including product names/images and bulk-order
savings. Delivery goes through an ``EmailSenderPort``:

- ``DjangoEmailSender`` uses Django's mail framework (SMTP in production,
  locmem in tests).
- ``ResendEmailClient`` posts to the Resend HTTP API.

Senders never raise: any failure comes back as ``EmailResult(success=False)``.
"""

import logging

import httpx
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from apps.orders.domain import Order

from .domain import EmailMessage, EmailResult, EmailSenderPort

logger = logging.getLogger("payments")


def format_money(cents: int) -> str:
    symbol = getattr(settings, "STOREFRONT_CURRENCY_SYMBOL", "R")
    return f"{symbol} {cents / 100:.2f}"


def compose_confirmation(order: Order, recipient: str) -> EmailMessage:
    """Build the confirmation email for a paid order."""
    lines = []
    for it in order.items:
        lines.append({
            "name": it.product_name or "Product",
            "image_url": it.image_url,
            "quantity": it.quantity,
            "size": it.size,
            "color": it.color,
            "is_bulk": it.savings_cents > 0,
            "original_unit": format_money(it.original_price_cents or 0),
            "bulk_unit": format_money(it.bulk_price_cents or 0),
            "original_total": format_money((it.original_price_cents or 0) * it.quantity),
            "savings": format_money(it.savings_cents),
            "total": format_money(it.line_total_cents),
        })
    savings = order.bulk_savings_cents
    context = {
        "store_name": getattr(settings, "STOREFRONT_NAME", "Apparel Cast"),
        "order_number": order.order_number,
        "lines": lines,
        "has_savings": savings > 0,
        "total_savings": format_money(savings),
        "delivery_fee": format_money(order.delivery_fee_cents) if order.delivery_fee_cents else None,
        "total": format_money(order.total_cents),
        "orders_url": f"{getattr(settings, 'STOREFRONT_APP_URL', '').rstrip('/')}/account/orders",
    }
    return EmailMessage(
        to=recipient,
        subject=f"Order Confirmation - {order.order_number}",
        text=render_to_string("payments/order_confirmation.txt", context),
        html=render_to_string("payments/order_confirmation.html", context),
    )


class DjangoEmailSender(EmailSenderPort):
    def send(self, message: EmailMessage) -> EmailResult:
        try:
            mail = EmailMultiAlternatives(
                subject=message.subject,
                body=message.text,
                from_email=settings.DEFAULT_FROM_EMAIL,
                to=[message.to],
            )
            mail.attach_alternative(message.html, "text/html")
            sent = mail.send(fail_silently=False)
        except Exception as e:
            logger.error("confirmation email failed", extra={"to": message.to, "error": str(e)})
            return EmailResult(success=False, error="EMAIL_SEND_FAILED")
        if not sent:
            return EmailResult(success=False, error="EMAIL_NOT_SENT")
        return EmailResult(success=True)


class ResendEmailClient(EmailSenderPort):
    """Resend HTTP API sender (``RESEND_API_KEY``)."""

    def __init__(self, api_key: str | None = None, url: str | None = None, timeout: float | None = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.url = url or settings.RESEND_API_URL
        self.timeout = timeout or settings.PAYMENTS_HTTP_TIMEOUT_SECS

    def send(self, message: EmailMessage) -> EmailResult:
        if not self.api_key:
            logger.error("resend api key is not configured")
            return EmailResult(success=False, error="EMAIL_NOT_CONFIGURED")
        payload = {
            "from": settings.DEFAULT_FROM_EMAIL,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(
                    self.url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.RequestError as e:
            logger.error("resend request failed", extra={"to": message.to, "error": str(e)})
            return EmailResult(success=False, error="EMAIL_SEND_FAILED")
        if resp.status_code >= 400:
            logger.error("resend rejected email", extra={"to": message.to, "status_code": resp.status_code})
            return EmailResult(success=False, error=f"EMAIL_HTTP_{resp.status_code}")
        try:
            message_id = resp.json().get("id")
        except ValueError:
            message_id = None
        return EmailResult(success=True, message_id=message_id)

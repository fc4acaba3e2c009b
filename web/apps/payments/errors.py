"""Error taxonomy for payment confirmation and reconciliation.

Every error carries a short upper-case ``code`` (also its ``str()``), in the
same spirit as the ``ValueError("PAYMENT_FAILED")`` codes used across the
orders API, and an ``http_status`` hint the views use when mapping errors to
responses.
"""

from typing import Optional


class PaymentsError(Exception):
    code = "PAYMENTS_ERROR"
    http_status = 500

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class ConfigurationError(PaymentsError):
    """Gateway credentials or webhook secret are missing."""

    code = "PAYMENTS_NOT_CONFIGURED"
    http_status = 500


class SignatureError(PaymentsError):
    """Webhook signature is missing or does not match the body."""

    code = "INVALID_SIGNATURE"
    http_status = 401


class MalformedEventError(PaymentsError):
    """Webhook body is not a usable event (bad JSON, no order id...)."""

    code = "MALFORMED_EVENT"
    http_status = 400


class OrderNotFound(PaymentsError):
    """The payment names an order that does not exist.

    Answered with 200: a redelivery cannot create the order, and the verify
    page shows a support warning instead.
    """

    code = "ORDER_NOT_FOUND"
    http_status = 200

    def __init__(self, order_id: str):
        super().__init__(self.code)
        self.order_id = order_id


class ReferenceConflictError(PaymentsError):
    """The order already carries a different gateway reference."""

    code = "REFERENCE_CONFLICT"
    http_status = 409

    def __init__(self, order_id: str, existing: Optional[str], attempted: str):
        super().__init__(self.code)
        self.order_id = order_id
        self.existing = existing
        self.attempted = attempted


class UpstreamError(PaymentsError):
    """The gateway could not be reached or answered with a failure."""

    code = "UPSTREAM_ERROR"
    http_status = 502

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.code)
        self.status_code = status_code


class SideEffectError(PaymentsError):
    """A post-payment side effect failed. Reported, never raised past the engine."""

    code = "SIDE_EFFECT_FAILED"
    http_status = 500

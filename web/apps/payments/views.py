"""HTTP views for payment initiation, verification and gateway webhooks.

Views stay small: validate input, call a port obtained from ``providers``,
hand payment signals to the reconciliation engine and map domain errors to
HTTP responses.

Verify path (``GET /api/payments/verify/``): called by the success page
after the gateway redirect. Gateway trouble is reported as a warning next to
an order that already exists; it never turns into an order-placement error.

Webhook path (``POST /api/payments/webhook/``): the signature is checked on
the raw body before anything is parsed. The response is sent only after the
engine finishes, so a non-200 makes the gateway redeliver. Problems a
redelivery cannot fix (unknown order, reference conflict, irrelevant event
types) are acknowledged with 200.
"""

import logging

from django.conf import settings
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders.repository import OrderRepository

from . import providers
from .domain import PaymentOutcome, ReconciliationStatus
from .errors import (
    ConfigurationError,
    MalformedEventError,
    OrderNotFound,
    ReferenceConflictError,
    SignatureError,
    UpstreamError,
)
from .schemas import InitializePaymentDTO, VerifyPaymentResponse
from .webhooks import extract_payment, parse_event, verify_signature

logger = logging.getLogger("payments")

UNCONFIRMED_WARNING = (
    "Your order has been placed, but we could not confirm your payment yet. "
    "It will update automatically once the payment provider confirms it."
)
NOT_FOUND_WARNING = "We received your payment but could not match it to an order. Please contact support."
EMAIL_WARNING = "Your payment is confirmed, but the confirmation email could not be sent."
NOT_PAYABLE_WARNING = "We received your payment, but this order is no longer open. Please contact support."


class InitializePaymentView(APIView):
    """Start a gateway payment for a pending order."""

    def post(self, request):
        try:
            dto = InitializePaymentDTO.model_validate(request.data)
        except ValidationError as e:
            return Response({"error": "INVALID_REQUEST", "detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        order = OrderRepository().get(str(dto.order_id))
        if order is None:
            return Response({"error": "ORDER_NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        if order.is_paid:
            return Response({"error": "ORDER_ALREADY_PAID"}, status=status.HTTP_409_CONFLICT)

        try:
            session = providers.get_gateway_client().initialize(order, dto.email)
        except ConfigurationError as e:
            return Response({"error": e.code}, status=e.http_status)
        except UpstreamError as e:
            return Response({"error": e.code, "detail": e.message}, status=e.http_status)

        return Response(
            {
                "reference": session.reference,
                "authorization_url": session.authorization_url,
                "access_code": session.access_code,
            },
            status=status.HTTP_200_OK,
        )


class VerifyPaymentView(APIView):
    """Verify a gateway reference and reconcile the order it belongs to.

    Responses:
        - 200 ``{status, amount, reference, order_id, reconciliation, warning?}``
        - 400 ``{error: "MISSING_REFERENCE"}``
        - 409 ``{error: "REFERENCE_CONFLICT", warning}``
        - 500 ``{error: "PAYMENTS_NOT_CONFIGURED"}``
        - 502 ``{error, warning}`` when the gateway failed or timed out
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments_verify"

    def get(self, request):
        reference = (request.GET.get("reference") or "").strip()
        if not reference:
            return Response({"error": "MISSING_REFERENCE"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = providers.get_gateway_client().verify(reference)
        except ConfigurationError as e:
            return Response({"error": e.code}, status=e.http_status)
        except UpstreamError as e:
            logger.warning("payment verification failed", extra={"reference": reference, "error": e.message})
            return Response(
                {"error": e.code, "detail": e.message, "warning": UNCONFIRMED_WARNING},
                status=e.http_status,
            )

        # The order comes from the metadata tagged at initiation, never from the query
        order_id = result.order_id
        requested = (request.GET.get("order_id") or "").strip()
        body = VerifyPaymentResponse(
            status=result.gateway_status or result.outcome.value,
            amount=result.amount,
            reference=result.reference,
            order_id=order_id,
        )

        if result.outcome != PaymentOutcome.SUCCESS:
            body.reconciliation = "not_successful"
            if result.outcome == PaymentOutcome.PENDING:
                body.warning = UNCONFIRMED_WARNING
            return Response(body.model_dump(exclude_none=True), status=status.HTTP_200_OK)

        if not order_id:
            logger.warning("verified payment carries no order id", extra={"reference": reference})
            body.warning = NOT_FOUND_WARNING
            return Response(body.model_dump(exclude_none=True), status=status.HTTP_200_OK)
        if requested and requested != order_id:
            logger.warning(
                "verified payment belongs to another order",
                extra={"reference": reference, "order_id": order_id, "requested_order_id": requested},
            )
            body.order_id = None
            body.warning = NOT_FOUND_WARNING
            return Response(body.model_dump(exclude_none=True), status=status.HTTP_200_OK)

        engine = providers.get_reconciliation_engine()
        try:
            rec = engine.confirm_payment(
                order_id,
                result.reference,
                result.outcome,
                customer_email=result.metadata.get("customer_email"),
                gateway_email=result.customer_email,
                paid_status=providers.verify_paid_status(),
                source="verify",
            )
        except OrderNotFound as e:
            body.warning = NOT_FOUND_WARNING
            return Response(body.model_dump(exclude_none=True), status=e.http_status)
        except ReferenceConflictError as e:
            return Response(
                {"error": e.code, "reference": result.reference, "warning": UNCONFIRMED_WARNING},
                status=e.http_status,
            )

        body.reconciliation = rec.status.value
        if rec.status == ReconciliationStatus.NOT_PAYABLE:
            body.warning = NOT_PAYABLE_WARNING
        elif not rec.side_effects_ok:
            body.warning = EMAIL_WARNING
        return Response(body.model_dump(exclude_none=True), status=status.HTTP_200_OK)


class PaymentWebhookView(APIView):
    """Receive signed gateway events.

    Responses:
        - 200 processed, ignored event type, unknown order or reference conflict
        - 400 malformed event or missing order id
        - 401 missing or invalid signature
        - 500 webhook secret unset, or reconciliation failed (gateway retries)
    """

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        raw_body = request.body
        signature = request.headers.get(settings.PAYMENTS_SIGNATURE_HEADER)

        # 1) Signature before parsing
        try:
            verify_signature(raw_body, signature, settings.PAYMENTS_WEBHOOK_SECRET)
        except ConfigurationError as e:
            return Response({"error": e.code}, status=e.http_status)
        except SignatureError as e:
            logger.warning("webhook signature rejected", extra={"error": e.message})
            return Response({"error": e.code}, status=e.http_status)

        # 2) Event
        try:
            event = parse_event(raw_body)
            signal = extract_payment(event, settings.PAYMENTS_SUCCESS_EVENT_TYPES)
        except MalformedEventError as e:
            logger.warning("malformed webhook event", extra={"error": e.message})
            return Response({"error": e.code, "detail": e.message}, status=e.http_status)

        if signal is None:
            logger.info("webhook event ignored", extra={"event_type": event.type})
            return Response({"detail": "EVENT_IGNORED"}, status=status.HTTP_200_OK)

        # 3) Reconcile, then acknowledge
        engine = providers.get_reconciliation_engine()
        try:
            rec = engine.confirm_payment(
                signal.order_id,
                signal.reference,
                PaymentOutcome.SUCCESS,
                customer_email=signal.customer_email,
                paid_status=providers.webhook_paid_status(),
                source="webhook",
            )
        except OrderNotFound as e:
            return Response({"detail": "ORDER_NOT_FOUND"}, status=e.http_status)
        except ReferenceConflictError:
            return Response({"detail": "REFERENCE_CONFLICT"}, status=status.HTTP_200_OK)
        except Exception:
            logger.exception("webhook reconciliation failed", extra={"order_id": signal.order_id})
            return Response({"error": "RECONCILIATION_FAILED"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({"detail": "PROCESSED", "reconciliation": rec.status.value}, status=status.HTTP_200_OK)

"""Reconciliation engine: the single place an order becomes paid.

Both notification paths end here. The verify view calls
``confirm_payment`` after querying the gateway; the webhook view calls it
after checking the event signature. They are not coordinated: either may
run first, both may run at the same time, and the gateway may redeliver a
webhook any number of times.

State machine (this core only)::

    AwaitingPayment (status=pending, payment_status=pending)
        │  confirm_payment(outcome=success)
        ▼
    Paid (payment_status=paid, status ∈ {processing, confirmed})

Exactly-once side effects rest on the store's conditional write
(``OrderStorePort.mark_paid``): it transitions the row only while it is not
yet paid, so of any number of racing calls exactly one observes the
transition and dispatches side effects. The others re-read the order and
return ``ALREADY_PAID``.

The payment reference is written once. A call carrying a different
reference for an order that already has one raises
``ReferenceConflictError`` and writes nothing.
"""

import logging
from typing import Optional

from apps.orders.domain import PAID_ORDER_STATUSES, Order, OrderStatus, OrderStorePort

from .domain import PaymentOutcome, ReconciliationResult, ReconciliationStatus
from .errors import OrderNotFound, ReferenceConflictError
from .side_effects import SideEffectDispatcher

logger = logging.getLogger("payments")


class ReconciliationEngine:
    """Idempotently transition orders to paid and fire one-time side effects.

    Args:
        orders: Order store offering the conditional ``mark_paid`` write.
        dispatcher: Side effects run by the transitioning call only.
        default_paid_status: Order status written when a caller does not
            choose one (``processing``).
    """

    def __init__(self, orders: OrderStorePort, dispatcher: SideEffectDispatcher,
                 default_paid_status: OrderStatus = OrderStatus.PROCESSING):
        self.orders = orders
        self.dispatcher = dispatcher
        self.default_paid_status = OrderStatus(default_paid_status)
        if self.default_paid_status not in PAID_ORDER_STATUSES:
            raise ValueError("INVALID_PAID_STATUS")

    def confirm_payment(self, order_id: str, reference: str, outcome: PaymentOutcome, *,
                        customer_email: Optional[str] = None,
                        gateway_email: Optional[str] = None,
                        paid_status: Optional[OrderStatus] = None,
                        source: str = "direct") -> ReconciliationResult:
        """Reconcile one payment signal against the order store.

        Args:
            order_id: Order the payment was tagged with.
            reference: Gateway transaction reference (idempotency key).
            outcome: Gateway outcome; anything but success is a no-op.
            customer_email: Email from the payment metadata (first choice).
            gateway_email: Email the gateway holds for the payer (second choice).
            paid_status: ``processing`` or ``confirmed``; one fixed value per
                call site.
            source: Caller label for logs (``verify``, ``webhook``...).

        Returns:
            ReconciliationResult with status TRANSITIONED (this call made the
            order paid and ran side effects), ALREADY_PAID (no-op repeat),
            NOT_SUCCESSFUL (outcome was not success) or NOT_PAYABLE (order
            already moved on from pending unpaid, e.g. cancelled).

        Raises:
            OrderNotFound: When ``order_id`` does not exist.
            ReferenceConflictError: When the order already carries another
                reference.
            ValueError: When ``reference`` is empty or ``paid_status`` is not
                a paid status.
        """
        outcome = PaymentOutcome(outcome)
        log_ctx = {"order_id": order_id, "reference": reference, "source": source}

        # 1) Only successes move state
        if outcome != PaymentOutcome.SUCCESS:
            logger.info("payment not successful, order left as is", extra={**log_ctx, "outcome": outcome.value})
            return ReconciliationResult(ReconciliationStatus.NOT_SUCCESSFUL)

        if not reference:
            raise ValueError("MISSING_REFERENCE")
        status = OrderStatus(paid_status) if paid_status else self.default_paid_status
        if status not in PAID_ORDER_STATUSES:
            raise ValueError("INVALID_PAID_STATUS")

        # 2) Load
        order = self.orders.get(order_id)
        if order is None:
            logger.warning("reconciliation target not found", extra=log_ctx)
            raise OrderNotFound(order_id)

        # 3) Idempotency guard
        if order.is_paid:
            return self._already_paid(order, reference, log_ctx)
        if order.payment_reference and order.payment_reference != reference:
            return self._conflict(order, reference, log_ctx)
        if order.status != OrderStatus.PENDING:
            return self._not_payable(order, log_ctx)

        # 4) Conditional write; losing a race is not an error
        if not self.orders.mark_paid(order.id, reference, status):
            fresh = self.orders.get(order.id)
            if fresh is None:
                raise OrderNotFound(order_id)
            if fresh.is_paid:
                logger.info("lost paid transition race", extra=log_ctx)
                return self._already_paid(fresh, reference, log_ctx)
            if fresh.payment_reference and fresh.payment_reference != reference:
                return self._conflict(fresh, reference, log_ctx)
            return self._not_payable(fresh, log_ctx)

        paid = self.orders.get(order.id) or order
        logger.info(
            "order marked paid",
            extra={**log_ctx, "status": status.value, "order_number": paid.order_number},
        )

        # 5) + 6) Side effects, once, never undoing the payment
        reports = self.dispatcher.dispatch(paid, (customer_email, gateway_email))
        failed = [r.name for r in reports if not r.success]
        if failed:
            logger.warning("side effects failed after payment", extra={**log_ctx, "failed": failed})
        return ReconciliationResult(ReconciliationStatus.TRANSITIONED, paid, reports)

    def _already_paid(self, order: Order, reference: str, log_ctx: dict) -> ReconciliationResult:
        if order.payment_reference and order.payment_reference != reference:
            return self._conflict(order, reference, log_ctx)
        logger.info("payment already reconciled", extra=log_ctx)
        return ReconciliationResult(ReconciliationStatus.ALREADY_PAID, order)

    def _not_payable(self, order: Order, log_ctx: dict) -> ReconciliationResult:
        logger.warning(
            "payment for order no longer awaiting it, left as is",
            extra={**log_ctx, "status": order.status.value},
        )
        return ReconciliationResult(ReconciliationStatus.NOT_PAYABLE, order)

    def _conflict(self, order: Order, reference: str, log_ctx: dict):
        logger.error(
            "payment reference conflict",
            extra={**log_ctx, "existing_reference": order.payment_reference},
        )
        raise ReferenceConflictError(order.id, order.payment_reference, reference)

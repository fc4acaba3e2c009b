"""One-time consequences of an order becoming paid.

``SideEffectDispatcher`` runs, in order, the cart clear and the confirmation
email for an order that the reconciliation engine has just transitioned.
Each step reports a ``SideEffectReport``; none of them raises. The engine
invokes the dispatcher only from the call that won the paid transition, so
every step runs once per order.
"""

import logging
from typing import Iterable, List, Optional

from apps.orders.domain import CartPort, Order

from .domain import EmailSenderPort, SideEffectReport
from .emails import compose_confirmation
from .errors import SideEffectError

logger = logging.getLogger("payments")

CART_CLEAR = "cart_clear"
CONFIRMATION_EMAIL = "confirmation_email"


def resolve_recipient(order: Order, candidates: Iterable[Optional[str]]) -> Optional[str]:
    """Pick the first non-empty email among ``candidates``, then the order's own."""
    for email in list(candidates) + [order.customer_email]:
        if email and email.strip():
            return email.strip()
    return None


class SideEffectDispatcher:
    def __init__(self, cart: CartPort, email: EmailSenderPort):
        self.cart = cart
        self.email = email

    def dispatch(self, order: Order, customer_emails: Iterable[Optional[str]] = ()) -> List[SideEffectReport]:
        """Run every side effect for ``order`` and return their reports.

        Args:
            order: Snapshot of the order after the paid transition.
            customer_emails: Recipient candidates in priority order (payment
                metadata email, then gateway customer email); the order's
                ``customer_email`` is used last.
        """
        return [
            self.clear_cart(order),
            self.send_confirmation(order, resolve_recipient(order, customer_emails)),
        ]

    def clear_cart(self, order: Order) -> SideEffectReport:
        if not order.user_id:
            return SideEffectReport(CART_CLEAR, True, detail="GUEST_ORDER")
        try:
            removed = self.cart.clear(order.user_id)
        except Exception as e:
            err = SideEffectError(f"CART_CLEAR_FAILED: {e}")
            logger.error(
                "cart clear failed",
                extra={"order_id": order.id, "user_id": order.user_id, "error": str(e)},
            )
            return SideEffectReport(CART_CLEAR, False, error=err)
        logger.info("cart cleared", extra={"order_id": order.id, "user_id": order.user_id, "removed": removed})
        return SideEffectReport(CART_CLEAR, True, detail=f"REMOVED_{removed}")

    def send_confirmation(self, order: Order, recipient: Optional[str]) -> SideEffectReport:
        if not recipient:
            logger.warning("no recipient for confirmation email", extra={"order_id": order.id})
            return SideEffectReport(CONFIRMATION_EMAIL, False, error=SideEffectError("NO_RECIPIENT"))
        try:
            message = compose_confirmation(order, recipient)
            result = self.email.send(message)
        except Exception as e:
            logger.error("confirmation email crashed", extra={"order_id": order.id, "error": str(e)})
            return SideEffectReport(CONFIRMATION_EMAIL, False, error=SideEffectError(str(e)))
        if not result.success:
            logger.error(
                "confirmation email not sent",
                extra={"order_id": order.id, "to": recipient, "error": result.error},
            )
            return SideEffectReport(CONFIRMATION_EMAIL, False, error=SideEffectError(result.error))
        logger.info("confirmation email sent", extra={"order_id": order.id, "to": recipient})
        return SideEffectReport(CONFIRMATION_EMAIL, True, detail=result.message_id)

"""In-process change feed for order rows.

``OrderChangeHub`` delivers row-change notifications keyed by order id to
subscribers such as ``OrderStatusNotifier``. Notifications carry only the
event kind and the order id; consumers re-fetch the full order through the
read endpoint instead of trusting the payload.

Changes reach the hub from two places:

- Django's ``post_save`` for ``OrderModel`` (admin edits, fulfilment updates).
- The ``order_changed`` signal sent by ``OrderRepository.mark_paid``, because
  the reconciliation write is a queryset ``update()`` that bypasses
  ``post_save``.
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Optional

from django.db.models.signals import post_save
from django.dispatch import Signal

logger = logging.getLogger("orders")

# Sent with ``order_id`` (str) after a committed write that bypassed save().
order_changed = Signal()

SUBSCRIBED = "SUBSCRIBED"
CLOSED = "CLOSED"
CHANNEL_ERROR = "CHANNEL_ERROR"

ChangeCallback = Callable[[dict], None]
StatusCallback = Callable[[str], None]


class Subscription:
    """Handle returned by ``OrderChangeHub.subscribe``."""

    def __init__(self, hub: "OrderChangeHub", order_id: str, callback: ChangeCallback,
                 on_status: Optional[StatusCallback] = None):
        self.hub = hub
        self.order_id = order_id
        self.callback = callback
        self.on_status = on_status
        self.status = SUBSCRIBED

    def _report(self, status: str) -> None:
        self.status = status
        if self.on_status is None:
            return
        try:
            self.on_status(status)
        except Exception:
            logger.exception("subscription status callback failed", extra={"order_id": self.order_id})

    def unsubscribe(self) -> None:
        if self.status == CLOSED:
            return
        self.hub._remove(self)
        self._report(CLOSED)


class OrderChangeHub:
    """Thread-safe fan-out of order change events to per-order subscribers.

    Callbacks run on the publishing thread. A failing callback is logged and
    its subscription flagged ``CHANNEL_ERROR``; other subscribers and the
    publisher are unaffected.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._subs: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, order_id: str, callback: ChangeCallback,
                  on_status: Optional[StatusCallback] = None) -> Subscription:
        sub = Subscription(self, str(order_id), callback, on_status)
        with self._lock:
            self._subs[sub.order_id].append(sub)
        sub._report(SUBSCRIBED)
        return sub

    def subscriber_count(self, order_id: str) -> int:
        with self._lock:
            return len(self._subs.get(str(order_id), ()))

    def publish(self, order_id: str, event: str = "UPDATE") -> int:
        """Notify subscribers of ``order_id``; returns how many were called."""
        order_id = str(order_id)
        with self._lock:
            targets = list(self._subs.get(order_id, ()))
        payload = {"event": event, "table": "orders", "order_id": order_id}
        for sub in targets:
            try:
                sub.callback(payload)
            except Exception:
                logger.exception("order change subscriber failed", extra={"order_id": order_id})
                sub._report(CHANNEL_ERROR)
        return len(targets)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.order_id)
            if not subs:
                return
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subs[sub.order_id]


hub = OrderChangeHub()


def _on_order_saved(sender, instance, created, **kwargs):
    hub.publish(str(instance.pk), "INSERT" if created else "UPDATE")


def _on_order_changed(sender, order_id, **kwargs):
    hub.publish(str(order_id), "UPDATE")


def connect_signals() -> None:
    from .models import OrderModel

    post_save.connect(_on_order_saved, sender=OrderModel, dispatch_uid="orders.realtime.post_save")
    order_changed.connect(_on_order_changed, dispatch_uid="orders.realtime.order_changed")

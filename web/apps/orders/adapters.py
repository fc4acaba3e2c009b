"""In-process stub adapters for the orders ports.

``InMemoryOrderStore`` and ``InMemoryCart`` implement ``OrderStorePort`` and
``CartPort`` without a database. They are intended for unit tests of the
reconciliation core (including threaded race tests) and for wiring
experiments where deterministic behaviour is useful.
"""

import dataclasses
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .domain import CartPort, Order, OrderStatus, OrderStorePort, PaymentStatus


class InMemoryOrderStore(OrderStorePort):
    """Dict-backed order store whose ``mark_paid`` is an atomic compare-and-set.

    ``mark_paid_calls`` and ``transitions`` count attempts and successful
    writes so tests can assert on them.
    """

    def __init__(self, orders: Optional[List[Order]] = None):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {o.id: o for o in (orders or [])}
        self.mark_paid_calls = 0
        self.transitions = 0

    def add(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = order
        return order

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(str(order_id))

    def mark_paid(self, order_id: str, reference: str, status: OrderStatus) -> bool:
        with self._lock:
            self.mark_paid_calls += 1
            current = self._orders.get(str(order_id))
            if current is None or current.payment_status == PaymentStatus.PAID:
                return False
            if current.status != OrderStatus.PENDING:
                return False
            if current.payment_reference not in (None, reference):
                return False
            self._orders[current.id] = dataclasses.replace(
                current,
                payment_reference=reference,
                payment_status=PaymentStatus.PAID,
                status=OrderStatus(status),
                updated_at=datetime.now(timezone.utc),
            )
            self.transitions += 1
            return True


class InMemoryCart(CartPort):
    """Cart store keyed by user id; each value is a list of product ids."""

    def __init__(self, items: Optional[Dict[str, List[str]]] = None):
        self._lock = threading.Lock()
        self.items: Dict[str, List[str]] = {k: list(v) for k, v in (items or {}).items()}
        self.clear_calls = 0

    def clear(self, user_id: str) -> int:
        with self._lock:
            self.clear_calls += 1
            return len(self.items.pop(str(user_id), []))

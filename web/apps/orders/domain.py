"""Domain models and ports for orders.

This module contains the enums describing an order's lifecycle, frozen
dataclasses used as DTOs between the persistence layer and the payments
reconciliation core, and the protocol definitions (ports) the core depends
on. Nothing here touches the ORM or the network.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Order lifecycle status.

    The reconciliation core only ever moves an order from PENDING to
    PROCESSING or CONFIRMED; later stages are driven by fulfilment and
    administrative tooling.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    """Payment status tracked alongside the order status."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


# Statuses after which a client no longer needs to watch the order.
TERMINAL_STATUSES = frozenset(
    {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value}
)

# Statuses the reconciliation core may write when an order becomes paid.
PAID_ORDER_STATUSES = frozenset({OrderStatus.PROCESSING, OrderStatus.CONFIRMED})


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """Line item snapshot taken when the order was placed.

    Attributes:
        product_id: Catalog identifier of the product.
        product_name: Product name resolved from the catalog, if available.
        image_url: Product image resolved from the catalog, if available.
        quantity: Units purchased.
        unit_price_cents: Price per unit at purchase time.
        size: Optional size variant.
        color: Optional color variant.
        is_bulk_order: Whether bulk/special-offer pricing applied.
        original_price_cents: Undiscounted unit price for bulk items.
        bulk_price_cents: Discounted unit price for bulk items.
        bulk_savings_cents: Savings recorded at checkout for this line.
    """

    product_id: str
    quantity: int
    unit_price_cents: int
    product_name: Optional[str] = None
    image_url: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    is_bulk_order: bool = False
    original_price_cents: Optional[int] = None
    bulk_price_cents: Optional[int] = None
    bulk_savings_cents: Optional[int] = None

    @property
    def effective_unit_price_cents(self) -> int:
        if self.is_bulk_order and self.bulk_price_cents and self.original_price_cents:
            return self.bulk_price_cents
        return self.unit_price_cents

    @property
    def line_total_cents(self) -> int:
        return self.effective_unit_price_cents * self.quantity

    @property
    def savings_cents(self) -> int:
        if self.is_bulk_order and self.bulk_price_cents and self.original_price_cents:
            return (self.original_price_cents - self.bulk_price_cents) * self.quantity
        return 0


@dataclass(frozen=True)
class Order:
    """Read-only snapshot of a persisted order.

    Snapshots are never mutated; the reconciliation core re-reads the store
    whenever it needs fresh state.
    """

    id: str
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    total_cents: int
    delivery_fee_cents: int = 0
    currency: str = "ZAR"
    payment_reference: Optional[str] = None
    user_id: Optional[str] = None
    customer_email: Optional[str] = None
    delivery_method: Optional[str] = None
    tracking_code: Optional[str] = None
    tracking_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItem] = field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def bulk_savings_cents(self) -> int:
        return sum(it.savings_cents for it in self.items)


# ---- Ports (DIP) ----
class OrderStorePort(Protocol):
    """Port over the order store used by the reconciliation core."""

    def get(self, order_id: str) -> Optional[Order]:
        """Return the order with its items, or None when it does not exist."""
        raise NotImplementedError()

    def mark_paid(self, order_id: str, reference: str, status: OrderStatus) -> bool:
        """Conditionally transition an order to paid.

        Implementations must perform a single compare-and-set write that only
        succeeds while the order is still pending and not yet paid, and its
        payment reference is either unset or equal to ``reference``.

        Returns:
            True when this call transitioned the order, False when no row
            matched (already paid, reference taken, order no longer pending, or
            order missing).
        """
        raise NotImplementedError()


class CartPort(Protocol):
    """Port over the cart store."""

    def clear(self, user_id: str) -> int:
        """Delete every cart item of ``user_id`` and return how many were removed."""
        raise NotImplementedError()

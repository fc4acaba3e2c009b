"""Repository layer for orders and carts.

Thin Django ORM implementations of ``OrderStorePort`` and ``CartPort``. They
return the frozen domain DTOs from ``domain.py`` so the reconciliation core
never handles ORM instances.
"""

from typing import Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .domain import CartPort, Order, OrderItem, OrderStatus, OrderStorePort, PaymentStatus
from .models import CartItemModel, OrderItemModel, OrderModel
from .realtime import order_changed


def _item_to_domain(row: OrderItemModel) -> OrderItem:
    product = row.product
    return OrderItem(
        product_id=str(row.product_id) if row.product_id else "",
        product_name=product.name if product else None,
        image_url=(product.image_url or None) if product else None,
        quantity=row.quantity,
        unit_price_cents=row.unit_price_cents,
        size=row.size or None,
        color=row.color or None,
        is_bulk_order=row.is_bulk_order,
        original_price_cents=row.original_price_cents,
        bulk_price_cents=row.bulk_price_cents,
        bulk_savings_cents=row.bulk_savings_cents,
    )


def order_to_domain(obj: OrderModel, with_items: bool = True) -> Order:
    """Map an ``OrderModel`` (and optionally its items) into an ``Order`` DTO."""
    items = []
    if with_items:
        items = [_item_to_domain(r) for r in obj.items.select_related("product").all()]
    return Order(
        id=str(obj.id),
        order_number=obj.order_number,
        status=OrderStatus(obj.status),
        payment_status=PaymentStatus(obj.payment_status),
        total_cents=obj.total_cents,
        delivery_fee_cents=obj.delivery_fee_cents,
        currency=obj.currency,
        payment_reference=obj.payment_reference,
        user_id=str(obj.user_id) if obj.user_id else None,
        customer_email=obj.customer_email or None,
        delivery_method=obj.delivery_method or None,
        tracking_code=obj.tracking_code or None,
        tracking_url=obj.tracking_url or None,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
        items=items,
    )


class OrderRepository(OrderStorePort):
    """Order store backed by the ``orders``/``order_items`` tables."""

    def get(self, order_id: str, user_id: Optional[str] = None) -> Optional[Order]:
        """Return the order (scoped to ``user_id`` when given) or None.

        Malformed ids are treated as missing rather than raising.
        """
        try:
            qs = OrderModel.objects.filter(pk=order_id)
            if user_id is not None:
                qs = qs.filter(user_id=user_id)
            obj = qs.first()
        except (ValidationError, ValueError):
            return None
        if obj is None:
            return None
        return order_to_domain(obj)

    def mark_paid(self, order_id: str, reference: str, status: OrderStatus) -> bool:
        """Compare-and-set transition to paid.

        Issues a single ``UPDATE orders SET ... WHERE id = %s AND
        status = 'pending' AND payment_status <> 'paid' AND
        (payment_reference IS NULL OR payment_reference = %s)``. Orders moved
        on by fulfilment or an administrator (cancelled, refunded...) are left
        alone. Concurrent callers race on the row; the database guarantees
        at most one of them sees ``rowcount == 1``.
        """
        try:
            updated = (
                OrderModel.objects.filter(pk=order_id, status=OrderStatus.PENDING.value)
                .exclude(payment_status=OrderModel.PaymentStatus.PAID)
                .filter(Q(payment_reference__isnull=True) | Q(payment_reference=reference))
                .update(
                    payment_reference=reference,
                    payment_status=OrderModel.PaymentStatus.PAID,
                    status=OrderStatus(status).value,
                    updated_at=timezone.now(),
                )
            )
        except (ValidationError, ValueError):
            return False
        if updated:
            transaction.on_commit(
                lambda: order_changed.send(sender=OrderModel, order_id=str(order_id))
            )
        return updated == 1


class CartRepository(CartPort):
    """Cart store backed by the ``cart_items`` table."""

    def clear(self, user_id: str) -> int:
        deleted, _ = CartItemModel.objects.filter(user_id=user_id).delete()
        return deleted

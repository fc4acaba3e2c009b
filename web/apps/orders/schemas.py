"""Pydantic schemas for the orders read API.

``OrderReadDTO`` is the projection returned by ``GET /api/orders/<id>/``. It
is consumed both by the confirmation page's first render and by the status
notifier's polling and real-time refreshes, so it is the single shape a
client ever sees for an order.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .domain import Order


class OrderItemReadDTO(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    image_url: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price_cents: int = Field(ge=0)
    line_total_cents: int = Field(ge=0)
    size: Optional[str] = None
    color: Optional[str] = None
    is_bulk_order: bool = False
    original_price_cents: Optional[int] = None
    bulk_price_cents: Optional[int] = None
    bulk_savings_cents: Optional[int] = None


class OrderReadDTO(BaseModel):
    """Full current order projection.

    Attributes:
        id: Order UUID as a string.
        order_number: Human readable number, e.g. ``ORD-1001``.
        status: Lifecycle status (``pending`` ... ``refunded``).
        payment_status: ``pending``, ``paid`` or ``failed``.
        payment_reference: Gateway reference, once reconciled.
        total_cents: Order total in minor units.
    """

    model_config = ConfigDict(use_enum_values=True)

    id: str
    order_number: str
    status: str
    payment_status: str
    payment_reference: Optional[str] = None
    total_cents: int = Field(ge=0)
    delivery_fee_cents: int = Field(ge=0, default=0)
    currency: str = Field(min_length=3, max_length=3)
    delivery_method: Optional[str] = None
    tracking_code: Optional[str] = None
    tracking_url: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: list[OrderItemReadDTO] = []

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_reference=order.payment_reference,
            total_cents=order.total_cents,
            delivery_fee_cents=order.delivery_fee_cents,
            currency=order.currency,
            delivery_method=order.delivery_method,
            tracking_code=order.tracking_code,
            tracking_url=order.tracking_url,
            user_id=order.user_id,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[
                OrderItemReadDTO(
                    product_id=it.product_id,
                    product_name=it.product_name,
                    image_url=it.image_url,
                    quantity=it.quantity,
                    unit_price_cents=it.unit_price_cents,
                    line_total_cents=it.line_total_cents,
                    size=it.size,
                    color=it.color,
                    is_bulk_order=it.is_bulk_order,
                    original_price_cents=it.original_price_cents,
                    bulk_price_cents=it.bulk_price_cents,
                    bulk_savings_cents=it.bulk_savings_cents,
                )
                for it in order.items
            ],
        )

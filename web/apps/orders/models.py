import uuid

from django.conf import settings
from django.db import models, transaction


class ProductModel(models.Model):
    """Catalog projection: only what order confirmation needs."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    image_url = models.URLField(max_length=500, blank=True, default="")

    class Meta:
        db_table = "products"


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter backing the human readable order number
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)
    order_number = models.CharField(max_length=32, unique=True, editable=False, blank=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        CONFIRMED = "confirmed"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"
        REFUNDED = "refunded"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        PAID = "paid"
        FAILED = "failed"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    # Gateway transaction reference; write-once, see OrderRepository.mark_paid
    payment_reference = models.CharField(max_length=128, null=True, blank=True)

    total_cents = models.PositiveIntegerField(default=0)
    delivery_fee_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="ZAR")

    user_id = models.UUIDField(null=True, blank=True, db_index=True)
    customer_email = models.EmailField(null=True, blank=True)

    delivery_method = models.CharField(max_length=32, blank=True, default="")
    tracking_code = models.CharField(max_length=64, blank=True, default="")
    tracking_url = models.URLField(max_length=500, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]

    def save(self, *args, **kwargs):
        # Assign `internal_id` and `order_number` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .exclude(internal_id__isnull=True)
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last else last.internal_id + 1
                if not self.order_number:
                    start = getattr(settings, "ORDER_NUMBER_START", 1001)
                    prefix = getattr(settings, "ORDER_NUMBER_PREFIX", "ORD-")
                    self.order_number = f"{prefix}{start + self.internal_id - 1}"
                super().save(*args, **kwargs)
            return

        super().save(*args, **kwargs)


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(
        ProductModel, related_name="+", null=True, on_delete=models.SET_NULL
    )
    quantity = models.PositiveIntegerField()
    unit_price_cents = models.PositiveIntegerField()
    size = models.CharField(max_length=32, blank=True, default="")
    color = models.CharField(max_length=32, blank=True, default="")

    # Bulk / special-offer pricing snapshot
    is_bulk_order = models.BooleanField(default=False)
    original_price_cents = models.PositiveIntegerField(null=True, blank=True)
    bulk_price_cents = models.PositiveIntegerField(null=True, blank=True)
    bulk_savings_cents = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class CartItemModel(models.Model):
    user_id = models.UUIDField(db_index=True)
    product = models.ForeignKey(ProductModel, related_name="+", on_delete=models.CASCADE)
    quantity = models.PositiveIntegerField(default=1)
    size = models.CharField(max_length=32, blank=True, default="")
    color = models.CharField(max_length=32, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "cart_items"

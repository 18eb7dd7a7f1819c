import uuid

from django.conf import settings
from django.db import models, transaction

MONEY = {"max_digits": 16, "decimal_places": 6}


class OrderModel(models.Model):
    # UUID PK exposed through the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Human-facing sequential order number
    number = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        PAID = "paid"
        FAILED = "failed"
        REFUNDED = "refunded"

    class PaymentMethod(models.TextChoices):
        CREDIT_CARD = "credit_card"
        DEBIT_CARD = "debit_card"
        PAYPAL = "paypal"
        STRIPE = "stripe"
        RAZORPAY = "razorpay"
        CASH_ON_DELIVERY = "cash_on_delivery"

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders")
    subtotal = models.DecimalField(**MONEY)
    tax = models.DecimalField(**MONEY)
    shipping = models.DecimalField(**MONEY)
    total = models.DecimalField(**MONEY)
    item_count = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    payment_method = models.CharField(max_length=32, choices=PaymentMethod.choices)
    payment_id = models.CharField(max_length=100, null=True, blank=True)
    shipping_address = models.JSONField()
    billing_address = models.JSONField()
    notes = models.CharField(max_length=500, null=True, blank=True)
    estimated_delivery = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=200, null=True, blank=True)
    stock_restored = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at", "-number"]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="orders_user_created_idx"),
            models.Index(fields=["status", "-created_at"], name="orders_status_created_idx"),
        ]

    def save(self, *args, **kwargs):
        # Assign the sequential `number` only on creation
        if self.number is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .exclude(number=None)
                    .order_by("-number")
                    .first()
                )
                self.number = 1 if last is None else last.number + 1
                super().save(*args, **kwargs)
            return
        super().save(*args, **kwargs)


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveSmallIntegerField()
    book_id = models.UUIDField(db_index=True)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=10, decimal_places=2)
    discount = models.DecimalField(max_digits=5, decimal_places=2, default=0)

    class Meta:
        db_table = "order_items"
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(fields=["order", "position"], name="order_items_position_uniq"),
        ]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+")
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_idempotency_keys"
        constraints = [
            models.UniqueConstraint(fields=["key", "user"], name="order_idempotency_key_user_uniq"),
        ]


class PendingStockRelease(models.Model):
    """A reservation whose stock could not be handed back to the catalog.

    Written when an order fails after the remote decrement and the
    compensating release also fails; ``reconcile_stock`` retries it.
    """

    reference = models.CharField(max_length=200, primary_key=True)
    items = models.JSONField(default=list)  # [{"book_id": str, "quantity": int}]
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_pending_stock_releases"
        ordering = ["created_at"]

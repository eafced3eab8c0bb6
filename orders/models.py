import uuid
from decimal import Decimal

from django.db import models
from django.db.models import Q


class Product(models.Model):
    """Catalog entry; the only trusted source of a unit price at checkout."""

    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    is_available = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.price})"


class DeliveryZone(models.Model):
    name = models.CharField(max_length=120, unique=True)
    base_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return f"{self.name} ({self.base_fee})"


class PickupPoint(models.Model):
    name = models.CharField(max_length=120)
    address = models.CharField(max_length=255, blank=True, default="")
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class CustomerAccount(models.Model):
    name = models.CharField(max_length=150, blank=True, default="")
    email = models.EmailField()
    email_norm = models.EmailField(unique=True)
    phone = models.CharField(max_length=20, blank=True, default="")
    email_verified = models.BooleanField(default=False)
    phone_verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name or self.email


class OrderQuerySet(models.QuerySet):
    def active(self):
        return self.exclude(status=Order.STATUS_CANCELLED)


class Order(models.Model):
    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_PREPARING = "preparing"
    STATUS_READY = "ready"
    STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
    STATUS_DELIVERED = "delivered"
    STATUS_CANCELLED = "cancelled"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_PREPARING, "Preparing"),
        (STATUS_READY, "Ready"),
        (STATUS_OUT_FOR_DELIVERY, "Out for delivery"),
        (STATUS_DELIVERED, "Delivered"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    PAYMENT_PENDING = "pending"
    PAYMENT_PAID = "paid"
    PAYMENT_FAILED = "failed"
    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_PAID, "Paid"),
        (PAYMENT_FAILED, "Failed"),
    ]

    FULFILLMENT_DELIVERY = "delivery"
    FULFILLMENT_PICKUP = "pickup"
    FULFILLMENT_CHOICES = [
        (FULFILLMENT_DELIVERY, "Delivery"),
        (FULFILLMENT_PICKUP, "Pickup"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)
    idempotency_key = models.CharField(max_length=128, db_index=True)

    customer = models.ForeignKey(CustomerAccount, on_delete=models.PROTECT, related_name="orders")
    customer_name = models.CharField(max_length=150, blank=True, default="")
    customer_email = models.EmailField()
    customer_phone = models.CharField(max_length=20, blank=True, default="")

    fulfillment_type = models.CharField(max_length=16, choices=FULFILLMENT_CHOICES)
    delivery_zone = models.ForeignKey(DeliveryZone, null=True, blank=True, on_delete=models.PROTECT, related_name="orders")
    pickup_point = models.ForeignKey(PickupPoint, null=True, blank=True, on_delete=models.PROTECT, related_name="orders")
    delivery_address = models.JSONField(blank=True, null=True)

    items_subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    fulfillment_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    client_total = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    payment_status = models.CharField(max_length=12, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING, db_index=True)
    payment_reference = models.CharField(max_length=128, unique=True, null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        ordering = ("-created_at",)
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                condition=~Q(status="cancelled"),
                name="uniq_active_order_idempotency_key",
            ),
        ]

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PAYMENT_PAID

    @property
    def is_delivery(self) -> bool:
        return self.fulfillment_type == self.FULFILLMENT_DELIVERY

    def summary(self) -> dict:
        return {
            "id": str(self.id),
            "order_number": self.order_number,
            "status": self.status,
            "payment_status": self.payment_status,
            "items_subtotal": str(self.items_subtotal),
            "fulfillment_fee": str(self.fulfillment_fee),
            "total_amount": str(self.total_amount),
            "payment_reference": self.payment_reference,
        }

    def __str__(self):
        return f"{self.order_number} ({self.status}/{self.payment_status})"


class OrderItem(models.Model):
    """Price snapshot taken at checkout; never follows later catalog changes."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="order_items")
    product_name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    line_total = models.DecimalField(max_digits=12, decimal_places=2)
    customizations = models.JSONField(blank=True, null=True)

    class Meta:
        ordering = ("id",)

    def __str__(self):
        return f"{self.product_name} x{self.quantity}"


class AuditLog(models.Model):
    action = models.CharField(max_length=64, db_index=True)
    category = models.CharField(max_length=32, default="Payment")
    message = models.CharField(max_length=255)
    order = models.ForeignKey(Order, null=True, blank=True, on_delete=models.SET_NULL, related_name="audit_logs")
    new_values = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.action}: {self.message}"

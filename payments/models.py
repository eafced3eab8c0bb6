from django.db import models


class PaymentTransaction(models.Model):
    """One gateway-side payment attempt, keyed by its provider reference.

    ``paid`` and ``failed`` are terminal; see :mod:`payments.ledger`. A
    ``superseded`` row was replaced by a newer attempt for the same order
    and is no longer offered to the customer, but the gateway can still
    settle it.
    """

    STATUS_PENDING = "pending"
    STATUS_PAID = "paid"
    STATUS_FAILED = "failed"
    STATUS_SUPERSEDED = "superseded"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PAID, "Paid"),
        (STATUS_FAILED, "Failed"),
        (STATUS_SUPERSEDED, "Superseded"),
    ]
    TERMINAL_STATUSES = (STATUS_PAID, STATUS_FAILED)

    provider_reference = models.CharField(max_length=128, unique=True)
    order = models.ForeignKey(
        "orders.Order", null=True, blank=True, on_delete=models.SET_NULL, related_name="payment_transactions"
    )
    transaction_type = models.CharField(max_length=16, default="charge")
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=8, default="NGN")
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    channel = models.CharField(max_length=32, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")

    authorization_url = models.URLField(max_length=500, blank=True, default="")
    access_code = models.CharField(max_length=128, blank=True, default="")
    gateway_response = models.CharField(max_length=255, blank=True, default="")

    metadata = models.JSONField(blank=True, null=True)
    provider_response = models.JSONField(blank=True, null=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def __str__(self):
        return f"{self.provider_reference} ({self.status})"

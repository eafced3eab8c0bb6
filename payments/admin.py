from django.contrib import admin

from .models import PaymentTransaction


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ("provider_reference", "status", "amount", "currency", "order", "channel", "created_at", "updated_at")
    search_fields = ("provider_reference", "customer_email", "order__order_number")
    list_filter = ("status", "currency", "channel", "created_at")
    readonly_fields = ("created_at", "updated_at", "metadata", "provider_response")
    raw_id_fields = ("order",)

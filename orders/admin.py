from django.contrib import admin

from .models import AuditLog, CustomerAccount, DeliveryZone, Order, OrderItem, PickupPoint, Product


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "product_name", "quantity", "unit_price", "line_total", "customizations")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "status", "payment_status", "total_amount", "customer_email", "created_at")
    search_fields = ("order_number", "idempotency_key", "payment_reference", "customer_email")
    list_filter = ("status", "payment_status", "fulfillment_type", "created_at")
    readonly_fields = ("id", "idempotency_key", "payment_reference", "client_total", "paid_at", "created_at", "updated_at")
    inlines = [OrderItemInline]


@admin.register(CustomerAccount)
class CustomerAccountAdmin(admin.ModelAdmin):
    list_display = ("email", "name", "phone", "created_at")
    search_fields = ("email", "email_norm", "name", "phone")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "price", "is_available", "updated_at")
    list_filter = ("is_available",)
    search_fields = ("name",)


admin.site.register(DeliveryZone)
admin.site.register(PickupPoint)


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "category", "message", "order", "created_at")
    list_filter = ("action", "category")
    readonly_fields = ("new_values",)

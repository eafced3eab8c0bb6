from django.urls import path

from . import views
from .webhook import paystack_webhook_view

app_name = "payments"
urlpatterns = [
    path("checkout", views.checkout_view, name="checkout"),
    path("verify", views.verify_payment_view, name="verify"),
    path("callback", views.payment_callback_view, name="callback"),  # Paystack redirects here after payment
    path("webhook", paystack_webhook_view, name="webhook"),
    path("orders/<str:order_number>", views.order_status_view, name="order_status"),
]

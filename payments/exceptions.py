from django.core.exceptions import ImproperlyConfigured

from orders.exceptions import CheckoutError, PersistenceError


class PaymentError(CheckoutError):
    user_message = "Payment could not be processed. Please try again."


class ConfigurationError(PaymentError, ImproperlyConfigured):
    """Gateway credentials missing or invalid; never retried."""

    user_message = "Payment system configuration issue. Please contact support."


class AmountInvalid(PaymentError):
    status_code = 400
    user_message = "Order total is invalid for payment."


class GatewayError(PaymentError):
    """The gateway rejected the request for a substantive reason."""

    status_code = 502

    def __init__(self, message=None, *, status=None, payload=None, user_message=None):
        super().__init__(message, user_message=user_message)
        self.status = status
        self.payload = payload


class DuplicateReference(GatewayError):
    pass


class GatewayUnavailable(PaymentError):
    """Network failure, timeout or 5xx; eligible for bounded retry."""

    status_code = 503
    user_message = "Payment gateway connection failed. Please try again."


class ReferenceNotFound(PaymentError):
    status_code = 404
    user_message = "Payment reference not found."


class ReconciliationAmbiguous(PaymentError):
    """The gateway confirmed a payment that no local order can be matched to."""

    user_message = "Payment received; your order is under review."


__all__ = [
    "AmountInvalid",
    "CheckoutError",
    "ConfigurationError",
    "DuplicateReference",
    "GatewayError",
    "GatewayUnavailable",
    "PaymentError",
    "PersistenceError",
    "ReconciliationAmbiguous",
    "ReferenceNotFound",
]

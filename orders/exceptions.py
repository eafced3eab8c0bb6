class CheckoutError(Exception):
    """Base for every failure the checkout/payment flow reports to a caller.

    ``user_message`` is the single human-readable line shown to the shopper;
    diagnostic detail goes to the log instead.
    """

    status_code = 500
    user_message = "Checkout processing failed"

    def __init__(self, message=None, *, user_message=None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


class ValidationError(CheckoutError):
    status_code = 400
    user_message = "Invalid checkout request"

    def __init__(self, message=None, *, user_message=None):
        # validation messages are safe to show as-is
        super().__init__(message, user_message=user_message or message)


class OrderCreationFailed(CheckoutError):
    user_message = "We could not create your order. Please try again."


class InvalidOrderItems(ValidationError, OrderCreationFailed):
    pass


class PersistenceError(CheckoutError):
    user_message = "We could not save your payment details. Please contact support."

import logging
from dataclasses import dataclass

from orders.exceptions import ValidationError
from orders.models import Order
from orders.pricing import reconcile_order_amount
from orders.services import create_or_get_order

from .gateway import InitializationResult, PaymentInitializer
from .references import allocate_reference

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    created: bool
    payment: InitializationResult | None = None

    def as_dict(self) -> dict:
        return {
            "ok": True,
            "created": self.created,
            "order": self.order.summary(),
            "payment": self.payment.as_dict() if self.payment is not None else None,
        }


def process_checkout(payload, *, initializer: PaymentInitializer | None = None) -> CheckoutResult:
    """Create (or re-find) the order for a checkout submission and open its payment.

    Repeated submissions with the same idempotency key land on the same
    order, the same canonical reference and, while the amount is unchanged,
    the same hosted payment page. An order that is already paid is returned
    without contacting the gateway.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body")

    # credentials are checked before anything is written
    initializer = initializer or PaymentInitializer.from_settings()

    customer = payload.get("customer") or {}
    fulfillment = payload.get("fulfillment") or {}
    if not isinstance(customer, dict) or not isinstance(fulfillment, dict):
        raise ValidationError("customer and fulfillment must be objects")

    order, created = create_or_get_order(
        payload.get("idempotency_key"),
        customer,
        payload.get("items") or [],
        fulfillment,
        client_totals={
            "total_amount": payload.get("total_amount"),
            "delivery_fee": payload.get("delivery_fee"),
        },
    )

    if order.is_paid:
        logger.info("Checkout for already paid order %s; no new payment opened", order.order_number)
        return CheckoutResult(order=order, created=created)

    amount = reconcile_order_amount(order)
    reference = allocate_reference(order)
    payment = initializer.initialize(
        order,
        reference,
        amount.total,
        order.customer_email,
        client_reference=payload.get("payment_reference") or payload.get("client_reference"),
    )
    return CheckoutResult(order=order, created=created, payment=payment)

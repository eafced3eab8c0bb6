import logging
import time
import uuid

from django.utils import timezone

from orders.models import Order

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "txn_"


def generate_reference() -> str:
    # e.g., txn_1699999999123_3f2a...; ms timestamp keeps references sortable
    return f"{REFERENCE_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex}"


def allocate_reference(order: Order) -> str:
    """Return the order's canonical payment reference, minting it on first use.

    The write is a conditional "set only if null" update, so concurrent
    callers converge on whichever reference landed first.
    """
    if order.payment_reference:
        return order.payment_reference

    candidate = generate_reference()
    updated = Order.objects.filter(pk=order.pk, payment_reference__isnull=True).update(payment_reference=candidate, updated_at=timezone.now())
    if updated:
        logger.info("Allocated reference %s to order %s", candidate, order.order_number)
        order.payment_reference = candidate
        return candidate

    order.refresh_from_db(fields=["payment_reference"])
    logger.info("Order %s already had reference %s", order.order_number, order.payment_reference)
    return order.payment_reference


def replace_reference(order: Order, stale: str) -> str:
    """Swap a reference the gateway refused for a fresh one (only if still ``stale``)."""
    candidate = generate_reference()
    updated = Order.objects.filter(pk=order.pk, payment_reference=stale).update(payment_reference=candidate, updated_at=timezone.now())
    if updated:
        logger.warning("Replaced colliding reference %s with %s on order %s", stale, candidate, order.order_number)
        order.payment_reference = candidate
        return candidate
    order.refresh_from_db(fields=["payment_reference"])
    return order.payment_reference

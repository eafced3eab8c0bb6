"""Authoritative order amounts.

Totals are recomputed from the persisted order items and fulfillment
configuration; client-submitted totals and fees are never used.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.db.models import Sum

from .audit import record_audit
from .models import Order

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100


def default_tolerance() -> Decimal:
    return Decimal(str(getattr(settings, "ORDERS_AMOUNT_TOLERANCE", "1.00")))


def to_minor_units(amount) -> int:
    """Major currency amount -> integer minor units (kobo/cents), rounded half-up."""
    return int((Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR).quantize(CENT)


@dataclass(frozen=True)
class AuthoritativeAmount:
    items_subtotal: Decimal
    fulfillment_fee: Decimal
    total: Decimal

    @property
    def total_minor(self) -> int:
        return to_minor_units(self.total)


def fulfillment_fee_for(order: Order) -> Decimal:
    if order.is_delivery and order.delivery_zone_id:
        return order.delivery_zone.base_fee.quantize(CENT)
    return Decimal("0.00")


def compute_authoritative_amount(order: Order) -> AuthoritativeAmount:
    subtotal = order.items.aggregate(total=Sum("line_total"))["total"] or Decimal("0.00")
    subtotal = Decimal(subtotal).quantize(CENT)
    fee = fulfillment_fee_for(order)
    return AuthoritativeAmount(items_subtotal=subtotal, fulfillment_fee=fee, total=(subtotal + fee).quantize(CENT))


def reconcile_order_amount(order: Order, tolerance: Decimal | None = None) -> AuthoritativeAmount:
    """Recompute the order's amounts and correct the stored ones on drift.

    When ``total_amount`` differs from the recomputed total by more than
    ``tolerance`` the subtotal, fee and total fields are overwritten in place.
    A delivery order without a fee is flagged for audit but not blocked.
    """
    tolerance = default_tolerance() if tolerance is None else tolerance
    amount = compute_authoritative_amount(order)

    if order.is_delivery and amount.fulfillment_fee <= 0:
        logger.warning("Delivery order %s has no fulfillment fee (zone=%s)", order.order_number, order.delivery_zone_id)
        record_audit(
            "delivery_fee_missing",
            f"Delivery order {order.order_number} has no fulfillment fee",
            order=order,
            delivery_zone_id=order.delivery_zone_id,
        )

    drift = abs(Decimal(order.total_amount) - amount.total)
    if drift > tolerance:
        logger.warning(
            "Order %s total drifted: stored=%s authoritative=%s; correcting",
            order.order_number, order.total_amount, amount.total,
        )
        previous = {"items_subtotal": order.items_subtotal, "fulfillment_fee": order.fulfillment_fee, "total_amount": order.total_amount}
        order.items_subtotal = amount.items_subtotal
        order.fulfillment_fee = amount.fulfillment_fee
        order.total_amount = amount.total
        order.save(update_fields=["items_subtotal", "fulfillment_fee", "total_amount", "updated_at"])
        record_audit(
            "amount_corrected",
            f"Corrected total for {order.order_number}: {previous['total_amount']} -> {amount.total}",
            order=order,
            previous=previous,
            authoritative_total=amount.total,
        )
    return amount

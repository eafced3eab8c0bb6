import logging
from typing import List

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

logger = logging.getLogger(__name__)


def _fail_silently() -> bool:
    return getattr(settings, "EMAIL_FAIL_SILENTLY", True)


def _admin_recipients() -> List[str]:
    # Comma-separated list via env or settings; fall back to DEFAULT_FROM_EMAIL/host user
    raw = getattr(settings, "PAYMENTS_ADMIN_EMAILS", None) or getattr(settings, "ADMIN_EMAILS", None)
    if not raw:
        raw = ",".join([
            getattr(settings, "EMAIL_HOST_USER", "") or "",
            getattr(settings, "DEFAULT_FROM_EMAIL", "") or "",
        ])
    emails = [e.strip() for e in (raw or "").split(",") if e and e.strip()]
    seen = set()
    uniq: List[str] = []
    for e in emails:
        if e.lower() not in seen:
            seen.add(e.lower())
            uniq.append(e)
    return uniq


def send_payment_confirmation(*, order) -> None:
    """Send a receipt to the customer and a notification to admins for a paid order.

    Called once, after the paid transition commits. Mail failures are logged
    and never propagate into payment verification.
    """
    try:
        context = {
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "customer_email": order.customer_email,
            "items": list(order.items.all()),
            "items_subtotal": order.items_subtotal,
            "fulfillment_type": order.get_fulfillment_type_display(),
            "fulfillment_fee": order.fulfillment_fee,
            "total_amount": order.total_amount,
            "currency": getattr(settings, "ORDERS_CURRENCY", "NGN"),
            "payment_reference": order.payment_reference,
            "status": order.get_status_display(),
        }
        from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None) or getattr(settings, "EMAIL_HOST_USER", None)

        try:
            if order.customer_email:
                subject = f"Payment received: {order.order_number} ({context['currency']} {order.total_amount})"
                text = render_to_string("emails/order_paid_customer.txt", context)
                html = render_to_string("emails/order_paid_customer.html", context)
                msg = EmailMultiAlternatives(subject, text, from_email, [order.customer_email])
                msg.attach_alternative(html, "text/html")
                msg.send(fail_silently=_fail_silently())
        except Exception:
            logger.exception("Failed to send payment receipt to %s", order.customer_email)

        try:
            admins = _admin_recipients()
            if admins:
                subject = f"New paid order: {order.order_number} ({context['currency']} {order.total_amount})"
                text = render_to_string("emails/order_paid_admin.txt", context)
                msg = EmailMultiAlternatives(subject, text, from_email, admins)
                msg.send(fail_silently=_fail_silently())
        except Exception:
            logger.exception("Failed to send payment admin notification for %s", order.order_number)

    except Exception:
        logger.exception("send_payment_confirmation crashed for order=%s", getattr(order, "order_number", None))

import json
import logging

from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from orders.exceptions import CheckoutError
from orders.models import Order

from .checkout import process_checkout
from .exceptions import GatewayUnavailable
from .reconciler import UNRESOLVED, VerificationReconciler, parse_uuid

logger = logging.getLogger(__name__)


def _json_body(request):
    try:
        return json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


def _error_response(exc: CheckoutError, **extra):
    body = {"ok": False, "error": exc.user_message}
    body.update(extra)
    return JsonResponse(body, status=exc.status_code)


@csrf_exempt
@require_POST
def checkout_view(request):
    body = _json_body(request)
    if not isinstance(body, dict):
        return JsonResponse({"ok": False, "error": "Invalid JSON body"}, status=400)
    try:
        result = process_checkout(body)
    except GatewayUnavailable as e:
        logger.warning("Checkout could not reach the gateway: %s", e)
        return _error_response(e, retryable=True)
    except CheckoutError as e:
        if e.status_code >= 500:
            logger.exception("Checkout failed")
        else:
            logger.info("Checkout rejected: %s", e)
        return _error_response(e)
    return JsonResponse(result.as_dict(), status=201 if result.created else 200)


def _verify(reference, order_id_hint=None):
    try:
        result = VerificationReconciler.from_settings().verify(reference, order_id_hint=order_id_hint)
    except GatewayUnavailable as e:
        logger.warning("Verification of %s deferred, gateway unavailable: %s", reference, e)
        return _error_response(e, retryable=True, reference=reference)
    except CheckoutError as e:
        if e.status_code >= 500:
            logger.exception("Verification of %s failed", reference)
        return _error_response(e, reference=reference)

    body = {"ok": result.status != UNRESOLVED, **result.as_dict()}
    if result.status == UNRESOLVED:
        body["error"] = "Payment reference not found"
        body["hint"] = "Check the reference or retry once the payment has completed."
    return JsonResponse(body, status=200)


@csrf_exempt
@require_POST
def verify_payment_view(request):
    body = _json_body(request)
    if not isinstance(body, dict):
        return JsonResponse({"ok": False, "error": "Invalid JSON body"}, status=400)
    return _verify(body.get("reference"), body.get("order_id"))


@require_GET
def payment_callback_view(request):
    """Return-page verification: Paystack appends ``reference``/``trxref``; we add ``order_id``."""
    order_id = request.GET.get("order_id") or None
    reference = request.GET.get("reference") or request.GET.get("trxref") or ""
    if not reference and parse_uuid(order_id) is not None:
        reference = Order.objects.filter(pk=parse_uuid(order_id)).values_list("payment_reference", flat=True).first() or ""
    if not reference:
        return JsonResponse({"ok": False, "error": "Payment reference is required"}, status=400)
    return _verify(reference, order_id)


@require_GET
def order_status_view(request, order_number: str):
    order = get_object_or_404(Order, order_number=order_number)
    latest = order.payment_transactions.order_by("-created_at").first()
    return JsonResponse({
        "ok": True,
        "order": order.summary(),
        "payment": None if latest is None else {
            "reference": latest.provider_reference,
            "status": latest.status,
            "amount": None if latest.amount is None else str(latest.amount),
            "paid_at": latest.paid_at.isoformat() if latest.paid_at else None,
        },
    })

import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from orders.exceptions import CheckoutError

from .exceptions import ConfigurationError, GatewayUnavailable
from .reconciler import UNRESOLVED, VerificationReconciler
from .utils import verify_signature

logger = logging.getLogger(__name__)

HANDLED_EVENTS = {"charge.success", "charge.failed"}


@csrf_exempt
@require_POST
def paystack_webhook_view(request):
    """
    Paystack event callback. Charge events are not trusted as-is: the
    reference is re-verified with the gateway, so a replayed or reordered
    event can only ever repeat the same finalization.
    """
    received_sig = request.headers.get("x-paystack-signature", "")
    try:
        valid = verify_signature(request.body, received_sig)
    except ConfigurationError as e:
        return JsonResponse({"ok": False, "error": e.user_message}, status=500)
    if not valid:
        logger.warning("Rejected Paystack webhook with bad signature")
        return JsonResponse({"ok": False, "error": "Invalid signature"}, status=401)

    try:
        event = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return JsonResponse({"ok": False, "error": "Invalid JSON body"}, status=400)

    name = str(event.get("event") or "") if isinstance(event, dict) else ""
    data = (event.get("data") or {}) if isinstance(event, dict) else {}
    if name not in HANDLED_EVENTS:
        logger.info("Ignoring Paystack webhook event %s", name or "<none>")
        return JsonResponse({"ok": True, "ignored": True})

    reference = str(data.get("reference") or "")
    if not reference:
        return JsonResponse({"ok": False, "error": "Event has no reference"}, status=400)

    try:
        result = VerificationReconciler.from_settings().verify(reference)
    except GatewayUnavailable as e:
        # non-2xx makes Paystack redeliver later
        logger.warning("Webhook %s for %s deferred: %s", name, reference, e)
        return JsonResponse({"ok": False, "error": e.user_message, "retryable": True}, status=503)
    except CheckoutError as e:
        logger.exception("Webhook %s for %s failed", name, reference)
        return JsonResponse({"ok": False, "error": e.user_message}, status=e.status_code)

    if result.status == UNRESOLVED:
        logger.error("Webhook %s references unknown payment %s", name, reference)
        return JsonResponse({"ok": False, **result.as_dict()}, status=202)
    return JsonResponse({"ok": True, **result.as_dict()})

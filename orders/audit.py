import json
import logging

from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

from .models import AuditLog

logger = logging.getLogger(__name__)


def record_audit(action: str, message: str, *, order=None, category="Payment", **new_values):
    """Best-effort audit row; a failed audit write never fails the caller."""
    try:
        values = json.loads(json.dumps(new_values, cls=DjangoJSONEncoder)) if new_values else None
        with transaction.atomic():
            return AuditLog.objects.create(
                action=action,
                category=category,
                message=message[:255],
                order=order,
                new_values=values,
            )
    except Exception:
        logger.exception("Failed to write audit log %s for order=%s", action, getattr(order, "order_number", None))
        return None

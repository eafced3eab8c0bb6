import hashlib
import hmac
import logging

from django.conf import settings

from .exceptions import ConfigurationError
from .integrations.paystack import active_secret_key

logger = logging.getLogger(__name__)


def webhook_secret() -> str:
    """Secret used to sign webhook bodies: WEBHOOK_SECRET, else the active API secret key."""
    conf = getattr(settings, "PAYSTACK", None) or {}
    secret = conf.get("WEBHOOK_SECRET") or ""
    if secret:
        return secret
    return active_secret_key(conf)


def verify_signature(body: bytes, received_sig: str) -> bool:
    """
    Paystack signs the raw request body with HMAC-SHA512 and sends the hex
    digest in ``x-paystack-signature``. An empty signature never verifies.
    """
    if not received_sig:
        return False
    try:
        secret = webhook_secret().encode()
    except ConfigurationError:
        logger.error("Paystack webhook secret missing in settings")
        raise
    expected = hmac.new(secret, body or b"", hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, (received_sig or "").strip().lower())

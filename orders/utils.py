import hashlib
import secrets

from django.utils import timezone


def normalize_email(email: str | None) -> str | None:
    return email.strip().lower() if email else None


def gen_order_number():
    # e.g., ORD-20250904-3FA9C1
    return f"ORD-{timezone.now().strftime('%Y%m%d')}-{secrets.token_hex(3).upper()}"


def cart_fingerprint(email: str | None, fulfillment_type: str | None, pairs) -> str:
    """Stable key for "the same checkout" when the client sends no idempotency key.

    ``pairs`` are validated ``(product_id, quantity)`` tuples.
    """
    pairs = sorted((str(pid), int(qty)) for pid, qty in pairs or [])
    raw = "|".join([
        normalize_email(email) or "",
        (fulfillment_type or "").strip().lower(),
        ";".join(f"{pid}:{qty}" for pid, qty in pairs),
    ])
    return "cart-" + hashlib.sha256(raw.encode("utf-8")).hexdigest()

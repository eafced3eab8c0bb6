"""Gateway initialization: turn an order + canonical reference into a hosted payment page."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from urllib.parse import urlencode

from django.conf import settings
from django.utils import timezone

from orders.audit import record_audit
from orders.exceptions import PersistenceError, ValidationError
from orders.models import Order
from orders.pricing import to_minor_units

from .exceptions import AmountInvalid, DuplicateReference, GatewayError
from .integrations.paystack import PaystackClient
from .ledger import upsert_transaction
from .models import PaymentTransaction
from .references import replace_reference

logger = logging.getLogger(__name__)

# Paystack refuses charges under 100 kobo (NGN 1.00)
MINIMUM_CHARGE_MINOR = 100


@dataclass(frozen=True)
class InitializationResult:
    hosted_payment_url: str
    access_code: str
    reference: str
    reused: bool = False

    def as_dict(self) -> dict:
        return {
            "authorization_url": self.hosted_payment_url,
            "access_code": self.access_code,
            "reference": self.reference,
        }


class PaymentInitializer:
    def __init__(self, client: PaystackClient, *, currency: str = "NGN", callback_url: str = "", channels=None):
        self.client = client
        self.currency = currency
        self.callback_url = callback_url
        self.channels = list(channels) if channels else None

    @classmethod
    def from_settings(cls, client: PaystackClient | None = None):
        conf = getattr(settings, "PAYSTACK", None) or {}
        return cls(
            client or PaystackClient.from_settings(),
            currency=conf.get("CURRENCY", "NGN"),
            callback_url=conf.get("CALLBACK_URL", ""),
            channels=conf.get("CHANNELS"),
        )

    def _callback_for(self, order: Order) -> str:
        if not self.callback_url:
            return ""
        sep = "&" if "?" in self.callback_url else "?"
        return f"{self.callback_url}{sep}{urlencode({'order_id': str(order.id)})}"

    def _metadata(self, order: Order, amount: Decimal, client_reference=None, extra=None) -> dict:
        meta = {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "fulfillment_type": order.fulfillment_type,
            "items_subtotal": str(order.items_subtotal),
            "fulfillment_fee": str(order.fulfillment_fee),
            "total": str(amount),
        }
        if client_reference:
            meta["client_reference"] = client_reference
        if extra:
            meta.update({k: v for k, v in extra.items() if k not in meta})
        return meta

    def _reusable_transaction(self, order: Order, amount: Decimal):
        pending = (
            PaymentTransaction.objects
            .filter(order=order, status=PaymentTransaction.STATUS_PENDING)
            .exclude(authorization_url="")
            .order_by("-created_at")
        )
        for tx in pending:
            if tx.amount is not None and to_minor_units(tx.amount) == to_minor_units(amount):
                return tx
            logger.warning(
                "Pending transaction %s for order %s has amount %s, order now charges %s; not reusing",
                tx.provider_reference, order.order_number, tx.amount, amount,
            )
        return None

    def _call_gateway(self, order, reference, amount_minor, customer_email, metadata):
        return self.client.initialize_transaction(
            email=customer_email,
            amount=amount_minor,
            reference=reference,
            callback_url=self._callback_for(order),
            metadata={**metadata, "reference": reference},
            currency=self.currency,
            channels=self.channels,
        )

    def initialize(self, order: Order, reference: str, amount, customer_email: str, *,
                   client_reference=None, metadata=None) -> InitializationResult:
        """Obtain a hosted payment URL for ``order`` charging ``amount`` (major units).

        An existing pending transaction for the same order and amount is
        returned as-is instead of opening a second gateway transaction. A
        gateway-side duplicate-reference rejection mints one new reference
        and retries exactly once. The pending ledger row must be written
        before the URL is handed back: without it verification has nothing
        to reconcile against.

        Older pending attempts for the order are marked superseded once the
        new one is recorded.
        """
        amount = Decimal(str(amount))
        amount_minor = to_minor_units(amount)
        if amount_minor < MINIMUM_CHARGE_MINOR:
            raise AmountInvalid(f"Amount {amount_minor} is below the minimum charge of {MINIMUM_CHARGE_MINOR} minor units")
        if not customer_email:
            raise ValidationError("Customer email is required")

        existing = self._reusable_transaction(order, amount)
        if existing is not None:
            logger.info("Reusing pending transaction %s for order %s", existing.provider_reference, order.order_number)
            return InitializationResult(existing.authorization_url, existing.access_code, existing.provider_reference, reused=True)

        meta = self._metadata(order, amount, client_reference, metadata)
        try:
            data = self._call_gateway(order, reference, amount_minor, customer_email, meta)
        except DuplicateReference as e:
            stale = reference
            reference = replace_reference(order, stale)
            logger.warning("Gateway refused reference %s for order %s (%s); retrying with %s", stale, order.order_number, e, reference)
            try:
                data = self._call_gateway(order, reference, amount_minor, customer_email, meta)
            except DuplicateReference as again:
                raise GatewayError(
                    f"Gateway refused regenerated reference {reference} for order {order.order_number}",
                    status=again.status,
                    payload=again.payload,
                ) from again

        final_reference = data.get("reference") or reference
        url = data.get("authorization_url") or ""
        access_code = data.get("access_code") or ""
        if not url:
            raise GatewayError(f"Gateway response for {final_reference} has no authorization_url", payload=data)

        try:
            upsert_transaction(
                final_reference,
                order=order,
                amount=amount,
                currency=self.currency,
                status=PaymentTransaction.STATUS_PENDING,
                customer_email=customer_email,
                authorization_url=url,
                access_code=access_code,
                metadata={**meta, "payment_method": "paystack", "initialized_at": timezone.now().isoformat()},
                provider_response=data,
            )
        except PersistenceError:
            logger.critical(
                "Gateway initialized %s for order %s but the pending transaction was not recorded",
                final_reference, order.order_number,
            )
            raise

        superseded = (
            PaymentTransaction.objects
            .filter(order=order, status=PaymentTransaction.STATUS_PENDING)
            .exclude(provider_reference=final_reference)
            .update(status=PaymentTransaction.STATUS_SUPERSEDED, updated_at=timezone.now())
        )
        if superseded:
            logger.info("Marked %s earlier pending transaction(s) for order %s superseded", superseded, order.order_number)

        if final_reference != order.payment_reference:
            Order.objects.filter(pk=order.pk).update(payment_reference=final_reference, updated_at=timezone.now())
            order.payment_reference = final_reference

        logger.info("Initialized payment %s for order %s (%s minor units)", final_reference, order.order_number, amount_minor)
        record_audit(
            "payment_initialized",
            f"Initialized Paystack payment: {final_reference}",
            order=order,
            reference=final_reference,
            amount=amount,
        )
        return InitializationResult(url, access_code, final_reference)

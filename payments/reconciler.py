"""Payment verification and order finalization.

A reference presented for verification may not be the one the gateway knows:
legacy client-side ``pay_...`` references, input missing the ``txn_`` prefix,
truncated copies, or a provisional reference superseded during
initialization. :class:`VerificationReconciler` asks the gateway first, falls
back to a fixed cascade of local resolution strategies, and finalizes the
ledger row and the order once the gateway recognises a reference.

Finalization is idempotent: the ledger is upserted, and the order's paid
transition is a conditional update gated on "not already paid", so webhook
and return-page verification may both run for the same payment.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from orders.audit import record_audit
from orders.exceptions import ValidationError
from orders.models import Order
from orders.pricing import from_minor_units, to_minor_units

from .emails import send_payment_confirmation
from .exceptions import ReconciliationAmbiguous, ReferenceNotFound
from .integrations.paystack import PaystackClient
from .ledger import upsert_transaction
from .models import PaymentTransaction
from .references import REFERENCE_PREFIX
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {"success"}
FAILED_STATUSES = {"failed", "reversed"}

# shorter fragments would substring-match unrelated references
MIN_FRAGMENT_LENGTH = 6

UNRESOLVED = "unresolved"


@dataclass
class VerificationResult:
    settled: bool
    status: str
    supplied_reference: str
    reference: str | None = None
    order: Order | None = None
    strategy: str | None = None
    strategies_tried: list = field(default_factory=list)
    manual_review: bool = False
    review_reason: str = ""
    transitioned: bool = False
    gateway_status: str = ""

    def as_dict(self) -> dict:
        return {
            "settled": self.settled,
            "status": self.status,
            "gateway_status": self.gateway_status,
            "reference": self.reference,
            "provided_reference": self.supplied_reference,
            "mapping_strategy": self.strategy,
            "strategies_tried": list(self.strategies_tried),
            "manual_review": self.manual_review,
            "review_reason": self.review_reason,
            "order": self.order.summary() if self.order is not None else None,
        }


def _parse_metadata(raw) -> dict:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def parse_uuid(value):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def mark_order_paid(order: Order, reference: str) -> bool:
    """Apply the pending -> paid/confirmed transition at most once.

    Returns True only for the call that performed the transition.
    """
    now = timezone.now()
    with transaction.atomic():
        updated = (
            Order.objects
            .filter(pk=order.pk)
            .exclude(payment_status=Order.PAYMENT_PAID)
            .update(payment_status=Order.PAYMENT_PAID, paid_at=now, updated_at=now)
        )
        if not updated:
            return False
        Order.objects.filter(pk=order.pk, status=Order.STATUS_PENDING).update(status=Order.STATUS_CONFIRMED)
        taken = Order.objects.filter(payment_reference=reference).exclude(pk=order.pk).exists()
        if not taken:
            Order.objects.filter(pk=order.pk).update(payment_reference=reference)
    order.refresh_from_db()
    logger.info("Order %s confirmed as paid via %s", order.order_number, reference)
    transaction.on_commit(lambda: send_payment_confirmation(order=order))
    return True


def mark_order_failed(order: Order) -> bool:
    updated = (
        Order.objects
        .filter(pk=order.pk, payment_status=Order.PAYMENT_PENDING)
        .update(payment_status=Order.PAYMENT_FAILED, updated_at=timezone.now())
    )
    if updated:
        order.refresh_from_db()
        logger.info("Order %s payment marked failed", order.order_number)
    return bool(updated)


class VerificationReconciler:
    def __init__(self, client: PaystackClient, *, retry: RetryPolicy | None = None, prefix: str = REFERENCE_PREFIX):
        self.client = client
        self.retry = retry or RetryPolicy()
        self.prefix = prefix

    @classmethod
    def from_settings(cls, client: PaystackClient | None = None):
        conf = getattr(settings, "PAYSTACK", None) or {}
        policy = RetryPolicy(
            attempts=int(conf.get("VERIFY_ATTEMPTS", 3)),
            base_delay=float(conf.get("VERIFY_BACKOFF", 1)),
        )
        return cls(client or PaystackClient.from_settings(), retry=policy)

    # ---------- gateway lookup ----------
    def _lookup(self, reference: str):
        """Gateway transaction data for ``reference``, or None if the gateway does not know it."""
        try:
            return self.retry.call(self.client.verify_transaction, reference)
        except ReferenceNotFound:
            logger.info("Gateway does not recognise reference %s", reference)
            return None

    # ---------- resolution strategies ----------
    def _with_prefix(self, reference: str) -> str:
        return reference if reference.startswith(self.prefix) else f"{self.prefix}{reference}"

    def _by_client_metadata(self, reference):
        ref = (
            PaymentTransaction.objects
            .filter(metadata__client_reference=reference)
            .order_by("-created_at")
            .values_list("provider_reference", flat=True)
            .first()
        )
        return [ref] if ref else []

    def _by_order_hint(self, order_id):
        pk = parse_uuid(order_id)
        if pk is None:
            return []
        candidates = []
        stored = Order.objects.filter(pk=pk).values_list("payment_reference", flat=True).first()
        if stored:
            candidates.append(stored)
        latest = (
            PaymentTransaction.objects
            .filter(order_id=pk)
            .order_by("-created_at")
            .values_list("provider_reference", flat=True)
            .first()
        )
        if latest:
            candidates.append(latest)
        return candidates

    def _prefix_added(self, reference):
        return [] if reference.startswith(self.prefix) else [self._with_prefix(reference)]

    def _prefix_match(self, reference):
        candidates = []
        for fragment in dict.fromkeys([reference, self._with_prefix(reference)]):
            ref = (
                PaymentTransaction.objects
                .filter(provider_reference__istartswith=fragment)
                .order_by("-created_at")
                .values_list("provider_reference", flat=True)
                .first()
            )
            if ref:
                candidates.append(ref)
        for fragment in dict.fromkeys([reference, self._with_prefix(reference)]):
            ref = (
                Order.objects
                .filter(payment_reference__istartswith=fragment)
                .order_by("-created_at")
                .values_list("payment_reference", flat=True)
                .first()
            )
            if ref:
                candidates.append(ref)
        return candidates

    def _contains_match(self, reference):
        if len(reference) < MIN_FRAGMENT_LENGTH:
            return []
        candidates = []
        ref = (
            PaymentTransaction.objects
            .filter(provider_reference__icontains=reference)
            .order_by("-created_at")
            .values_list("provider_reference", flat=True)
            .first()
        )
        if ref:
            candidates.append(ref)
        ref = (
            Order.objects
            .filter(payment_reference__icontains=reference)
            .order_by("-created_at")
            .values_list("payment_reference", flat=True)
            .first()
        )
        if ref:
            candidates.append(ref)
        return candidates

    def _strategies(self, reference: str, order_id_hint):
        yield "client_metadata", lambda: self._by_client_metadata(reference)
        if order_id_hint:
            yield "order_hint", lambda: self._by_order_hint(order_id_hint)
        yield "prefix_added", lambda: self._prefix_added(reference)
        yield "prefix_match", lambda: self._prefix_match(reference)
        yield "contains_match", lambda: self._contains_match(reference)

    def _resolve(self, reference: str, order_id_hint, tried: list):
        attempted = {reference}
        for name, finder in self._strategies(reference, order_id_hint):
            tried.append(name)
            for candidate in finder():
                if not candidate or candidate in attempted:
                    continue
                attempted.add(candidate)
                data = self._lookup(candidate)
                if data is not None:
                    logger.warning("Resolved reference %s to %s via %s", reference, candidate, name)
                    return candidate, name, data
        return None, None, None

    # ---------- finalization ----------
    def _resolve_order(self, reference: str, metadata: dict) -> Order | None:
        pk = parse_uuid(metadata.get("order_id") or metadata.get("orderId"))
        if pk is not None:
            order = Order.objects.filter(pk=pk).first()
            if order is not None:
                return order
        order = Order.objects.filter(payment_reference=reference).first()
        if order is not None:
            return order
        order = (
            Order.objects
            .filter(payment_transactions__provider_reference=reference)
            .first()
        )
        if order is not None:
            return order
        number = metadata.get("order_number") or metadata.get("orderNumber")
        if number:
            return Order.objects.filter(order_number=number).first()
        return None

    def _settle(self, order: Order | None, reference: str, amount_minor) -> bool:
        if order is None:
            raise ReconciliationAmbiguous(f"Payment {reference} confirmed by gateway but no order matches it")
        expected = to_minor_units(order.total_amount)
        if amount_minor is not None and int(amount_minor) < expected:
            raise ReconciliationAmbiguous(
                f"Payment {reference} settled {amount_minor} minor units but order {order.order_number} totals {expected}"
            )
        return mark_order_paid(order, reference)

    def _finalize(self, result: VerificationResult, data: dict) -> VerificationResult:
        reference = result.reference
        gateway_status = str(data.get("status") or "").lower()
        if gateway_status in SUCCESS_STATUSES:
            ledger_status = PaymentTransaction.STATUS_PAID
        elif gateway_status in FAILED_STATUSES:
            ledger_status = PaymentTransaction.STATUS_FAILED
        else:
            ledger_status = PaymentTransaction.STATUS_PENDING

        metadata = _parse_metadata(data.get("metadata"))
        amount_minor = data.get("amount")
        if not isinstance(amount_minor, int):
            amount_minor = None

        fields = {
            "status": ledger_status,
            "currency": data.get("currency") or "NGN",
            "channel": str(data.get("channel") or "")[:32],
            "gateway_response": str(data.get("gateway_response") or "")[:255],
            "provider_response": data,
        }
        if amount_minor is not None:
            fields["amount"] = from_minor_units(amount_minor)
        email = (data.get("customer") or {}).get("email")
        if email:
            fields["customer_email"] = email
        paid_at = parse_datetime(str(data.get("paid_at") or data.get("paidAt") or ""))
        if paid_at is not None:
            fields["paid_at"] = paid_at
        elif ledger_status == PaymentTransaction.STATUS_PAID:
            fields["paid_at"] = timezone.now()

        with transaction.atomic():
            order = self._resolve_order(reference, metadata)
            if order is not None:
                fields["order"] = order
            tx, _ = upsert_transaction(reference, **fields)
            # a settled row keeps its status whatever the gateway says now
            ledger_status = tx.status

            result.order = order
            result.gateway_status = gateway_status
            result.status = ledger_status
            result.settled = ledger_status == PaymentTransaction.STATUS_PAID

            if result.settled:
                try:
                    result.transitioned = self._settle(order, reference, amount_minor)
                except ReconciliationAmbiguous as e:
                    reason = "order_not_found" if order is None else "amount_mismatch"
                    logger.error("Manual review needed (%s): %s", reason, e)
                    record_audit(
                        "reconciliation_ambiguous" if order is None else "amount_mismatch",
                        str(e),
                        order=order,
                        reference=reference,
                        gateway_amount=amount_minor,
                        metadata=metadata,
                    )
                    result.manual_review = True
                    result.review_reason = reason
            elif ledger_status == PaymentTransaction.STATUS_FAILED and order is not None:
                # a failed attempt that was already replaced leaves the order open
                if order.payment_reference in (None, "", reference):
                    mark_order_failed(order)

        record_audit(
            "payment_verified",
            f"Paystack verified: {result.supplied_reference}",
            order=order,
            reference=reference,
            status=gateway_status,
            strategy=result.strategy,
        )
        return result

    def verify(self, supplied_reference: str, order_id_hint=None) -> VerificationResult:
        """Resolve ``supplied_reference`` against the gateway and finalize the payment.

        Never raises for an unknown reference: once every strategy is
        exhausted the result is ``status="unresolved"`` with the strategies
        that were tried. :class:`GatewayUnavailable` still propagates after
        the retry policy gives up.
        """
        reference = str(supplied_reference or "").strip()
        if not reference:
            raise ValidationError("Payment reference is required")

        result = VerificationResult(settled=False, status=UNRESOLVED, supplied_reference=reference)
        data = self._lookup(reference)
        if data is not None:
            result.reference, result.strategy = reference, "direct"
        else:
            effective, strategy, data = self._resolve(reference, order_id_hint, result.strategies_tried)
            if data is None:
                logger.warning(
                    "Could not resolve reference %s (order hint=%s) after %s",
                    reference, order_id_hint, ", ".join(result.strategies_tried),
                )
                return result
            result.reference, result.strategy = effective, strategy

        return self._finalize(result, data)

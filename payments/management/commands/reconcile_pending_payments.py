import time

from django.core.management.base import BaseCommand
from django.utils import timezone

from payments.exceptions import GatewayUnavailable, PaymentError
from payments.models import PaymentTransaction
from payments.reconciler import UNRESOLVED, VerificationReconciler


class Command(BaseCommand):
    help = "Re-verify pending Paystack transactions with the gateway and finalize their orders"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=5)

    def handle(self, *args, **opts):
        cutoff = timezone.now() - timezone.timedelta(minutes=opts["older_than_minutes"])
        qs = (
            PaymentTransaction.objects
            .filter(status=PaymentTransaction.STATUS_PENDING, updated_at__lt=cutoff)
            .order_by("updated_at")[:opts["max"]]
        )
        pending = list(qs)
        if not pending:
            self.stdout.write(self.style.SUCCESS("No pending payments to reconcile."))
            return

        reconciler = VerificationReconciler.from_settings()
        for tx in pending:
            try:
                result = reconciler.verify(tx.provider_reference)
            except GatewayUnavailable as e:
                self.stdout.write(self.style.WARNING(f"{tx.provider_reference}: {e}; stopping"))
                break
            except PaymentError as e:
                self.stdout.write(self.style.WARNING(f"{tx.provider_reference}: {e}"))
            else:
                if result.status == UNRESOLVED:
                    self.stdout.write(self.style.WARNING(f"{tx.provider_reference}: gateway does not know this reference"))
                elif result.manual_review:
                    self.stdout.write(self.style.WARNING(f"{tx.provider_reference} -> {result.status} (manual review: {result.review_reason})"))
                else:
                    self.stdout.write(self.style.SUCCESS(f"Updated {tx.provider_reference} -> {result.status}"))
            if opts["sleep"]:
                time.sleep(opts["sleep"])

from decimal import Decimal

from orders.models import DeliveryZone, Product
from orders.pricing import reconcile_order_amount
from orders.services import create_or_get_order
from payments.exceptions import DuplicateReference, ReferenceNotFound


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


class FakeGateway:
    """In-memory stand-in for PaystackClient.

    ``transactions`` maps references the gateway knows to their verify data.
    ``initialize_errors`` / ``verify_errors`` are raised (in order) before
    the normal answer.
    A reference that was already initialized is refused, as Paystack does.
    """

    def __init__(self, transactions=None):
        self.transactions = dict(transactions or {})
        self.initialized = []
        self.verified = []
        self.initialize_errors = []
        self.verify_errors = []
        self.seen_references = set()

    def initialize_transaction(self, *, email, amount, reference, callback_url=None, metadata=None,
                               currency="NGN", channels=None):
        self.initialized.append({
            "email": email,
            "amount": amount,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
            "currency": currency,
        })
        if self.initialize_errors:
            raise self.initialize_errors.pop(0)
        if reference in self.seen_references:
            raise DuplicateReference("Duplicate Transaction Reference", status=400)
        self.seen_references.add(reference)
        return {
            "authorization_url": f"https://checkout.paystack.test/{reference[-8:]}",
            "access_code": f"ac_{reference[-8:]}",
            "reference": reference,
        }

    def verify_transaction(self, reference):
        self.verified.append(reference)
        if self.verify_errors:
            raise self.verify_errors.pop(0)
        if reference not in self.transactions:
            raise ReferenceNotFound(f"Paystack does not recognise reference {reference}")
        return self.transactions[reference]


def gateway_data(reference, amount, *, status="success", order=None, **metadata):
    if order is not None:
        metadata.setdefault("order_id", str(order.id))
        metadata.setdefault("order_number", order.order_number)
    return {
        "reference": reference,
        "amount": amount,
        "currency": "NGN",
        "status": status,
        "channel": "card",
        "gateway_response": "Successful" if status == "success" else status.title(),
        "customer": {"email": "ada@example.com"},
        "metadata": metadata,
    }


def make_catalog():
    return {
        "bread": Product.objects.create(name="Sourdough", price=Decimal("1000.00")),
        "jam": Product.objects.create(name="Jam", price=Decimal("500.00")),
        "zone": DeliveryZone.objects.create(name="Lekki", base_fee=Decimal("300.00")),
    }


def checkout_payload(catalog, key="chk-1", **overrides):
    payload = {
        "idempotency_key": key,
        "customer": {"name": "Ada Obi", "email": "ada@example.com", "phone": "08030000000"},
        "items": [
            {"product_id": catalog["bread"].pk, "quantity": 2},
            {"product_id": catalog["jam"].pk, "quantity": 1},
        ],
        "fulfillment": {"type": "pickup"},
    }
    payload.update(overrides)
    return payload


def make_order(catalog, key="chk-1", **overrides):
    """A pickup order for 2 x 1000 + 1 x 500, totals already made authoritative."""
    payload = checkout_payload(catalog, key, **overrides)
    order, _ = create_or_get_order(
        payload["idempotency_key"], payload["customer"], payload["items"], payload["fulfillment"],
    )
    reconcile_order_amount(order)
    return order

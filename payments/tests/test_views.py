import json
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.urls import reverse

from orders.models import Order
from payments.exceptions import GatewayUnavailable
from payments.integrations.paystack import PaystackClient
from payments.models import PaymentTransaction

from .fakes import FakeGateway, checkout_payload, gateway_data, make_catalog


class CheckoutViewTests(TestCase):
    def setUp(self):
        self.catalog = make_catalog()
        self.gateway = FakeGateway()
        patcher = patch.object(PaystackClient, "from_settings", return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post(self, payload):
        return self.client.post(reverse("payments:checkout"), data=json.dumps(payload), content_type="application/json")

    def test_checkout_creates_order_and_payment(self):
        resp = self._post(checkout_payload(self.catalog))
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertTrue(body["ok"])
        self.assertTrue(body["created"])
        self.assertEqual(body["order"]["total_amount"], "2500.00")
        self.assertTrue(body["payment"]["authorization_url"].startswith("https://checkout.paystack.test/"))
        self.assertEqual(body["payment"]["reference"], body["order"]["payment_reference"])
        self.assertTrue(body["payment"]["reference"].startswith("txn_"))
        self.assertEqual(self.gateway.initialized[0]["amount"], 250000)

    def test_resubmission_returns_same_payment(self):
        first = self._post(checkout_payload(self.catalog)).json()
        resp = self._post(checkout_payload(self.catalog))
        self.assertEqual(resp.status_code, 200)
        second = resp.json()
        self.assertFalse(second["created"])
        self.assertEqual(first["order"]["id"], second["order"]["id"])
        self.assertEqual(first["payment"], second["payment"])
        self.assertEqual(len(self.gateway.initialized), 1)
        self.assertEqual(Order.objects.count(), 1)

    def test_client_total_is_not_charged(self):
        resp = self._post(checkout_payload(self.catalog, total_amount="2000.00", delivery_fee="0"))
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["order"]["total_amount"], "2500.00")
        self.assertEqual(self.gateway.initialized[0]["amount"], 250000)

    def test_delivery_fee_is_charged(self):
        payload = checkout_payload(
            self.catalog, fulfillment={"type": "delivery", "delivery_zone_id": self.catalog["zone"].pk},
        )
        resp = self._post(payload)
        self.assertEqual(resp.json()["order"]["total_amount"], "2800.00")
        self.assertEqual(self.gateway.initialized[0]["amount"], 280000)
        self.assertEqual(self.gateway.initialized[0]["metadata"]["fulfillment_fee"], "300.00")

    def test_paid_order_is_not_charged_again(self):
        order_id = self._post(checkout_payload(self.catalog)).json()["order"]["id"]
        Order.objects.filter(pk=order_id).update(payment_status=Order.PAYMENT_PAID)
        resp = self._post(checkout_payload(self.catalog))
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(resp.json()["payment"])
        self.assertEqual(len(self.gateway.initialized), 1)

    def test_bad_requests(self):
        resp = self.client.post(reverse("payments:checkout"), data="{not json", content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["ok"])

        resp = self._post(checkout_payload(self.catalog, customer={"name": "Ada"}))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Customer email is required")

        resp = self._post(checkout_payload(self.catalog, items=[]))
        self.assertEqual(resp.status_code, 400)

        resp = self.client.get(reverse("payments:checkout"))
        self.assertEqual(resp.status_code, 405)
        self.assertFalse(Order.objects.exists())

    def test_malformed_input_is_rejected(self):
        bread = self.catalog["bread"]
        payloads = [
            checkout_payload(self.catalog, key=None, items=[{"product_id": bread.pk, "quantity": "two"}]),
            checkout_payload(self.catalog, key=None, items=["bread"]),
            checkout_payload(self.catalog, key=None, customer={"email": 12345}),
            checkout_payload(self.catalog, total_amount="NaN"),
            checkout_payload(self.catalog, delivery_fee="Infinity"),
        ]
        for payload in payloads:
            with self.subTest(payload=payload):
                resp = self._post(payload)
                self.assertEqual(resp.status_code, 400)
                self.assertFalse(resp.json()["ok"])
        self.assertFalse(Order.objects.exists())
        self.assertEqual(self.gateway.initialized, [])

    def test_gateway_unavailable(self):
        self.gateway.initialize_errors = [GatewayUnavailable("timeout")]
        resp = self._post(checkout_payload(self.catalog))
        self.assertEqual(resp.status_code, 503)
        self.assertTrue(resp.json()["retryable"])
        # the order survives; resubmitting continues with it
        self.assertEqual(Order.objects.count(), 1)
        resp = self._post(checkout_payload(self.catalog))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Order.objects.count(), 1)


@override_settings(PAYSTACK={"TEST_MODE": True, "SECRET_KEY": ""})
class CheckoutConfigurationTests(TestCase):
    def test_missing_secret_key_fails_before_writing(self):
        catalog = make_catalog()
        with self.assertLogs("payments.views", level="ERROR"):
            resp = self.client.post(
                reverse("payments:checkout"), data=json.dumps(checkout_payload(catalog)), content_type="application/json",
            )
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["error"], "Payment system configuration issue. Please contact support.")
        self.assertFalse(Order.objects.exists())


class VerifyViewTests(TestCase):
    def setUp(self):
        self.catalog = make_catalog()
        self.gateway = FakeGateway()
        patcher = patch.object(PaystackClient, "from_settings", return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)
        body = self.client.post(
            reverse("payments:checkout"), data=json.dumps(checkout_payload(self.catalog, payment_reference="pay_abc123")),
            content_type="application/json",
        ).json()
        self.order = Order.objects.get(pk=body["order"]["id"])
        self.reference = body["payment"]["reference"]
        self.gateway.transactions[self.reference] = gateway_data(self.reference, 250000, order=self.order)

    def _verify(self, payload):
        return self.client.post(reverse("payments:verify"), data=json.dumps(payload), content_type="application/json")

    def test_verify_settles_order(self):
        resp = self._verify({"reference": self.reference})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["ok"])
        self.assertTrue(body["settled"])
        self.assertEqual(body["order"]["payment_status"], "paid")
        self.assertEqual(body["mapping_strategy"], "direct")

    def test_verify_legacy_reference(self):
        body = self._verify({"reference": "pay_abc123"}).json()
        self.assertTrue(body["settled"])
        self.assertEqual(body["reference"], self.reference)
        self.assertEqual(body["provided_reference"], "pay_abc123")
        self.assertEqual(body["mapping_strategy"], "client_metadata")

    def test_unresolved_reference_is_not_an_http_error(self):
        resp = self._verify({"reference": "nope-nothing"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["status"], "unresolved")
        self.assertIn("contains_match", body["strategies_tried"])

    def test_missing_reference(self):
        self.assertEqual(self._verify({}).status_code, 400)
        resp = self.client.post(reverse("payments:verify"), data="[]", content_type="application/json")
        self.assertEqual(resp.status_code, 400)

    @override_settings(PAYSTACK={"TEST_MODE": True, "SECRET_KEY": "sk_test_dummy", "VERIFY_ATTEMPTS": 2, "VERIFY_BACKOFF": 0})
    def test_gateway_unavailable_is_retryable(self):
        self.gateway.verify_errors = [GatewayUnavailable("timeout"), GatewayUnavailable("timeout")]
        resp = self._verify({"reference": self.reference})
        self.assertEqual(resp.status_code, 503)
        self.assertTrue(resp.json()["retryable"])
        self.assertEqual(len(self.gateway.verified), 2)

    def test_callback_verifies_reference(self):
        resp = self.client.get(reverse("payments:callback"), {"reference": self.reference, "order_id": str(self.order.id)})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["settled"])

    def test_callback_accepts_trxref(self):
        resp = self.client.get(reverse("payments:callback"), {"trxref": self.reference})
        self.assertTrue(resp.json()["settled"])

    def test_callback_falls_back_to_order_reference(self):
        resp = self.client.get(reverse("payments:callback"), {"order_id": str(self.order.id)})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["reference"], self.reference)

    def test_callback_without_reference(self):
        self.assertEqual(self.client.get(reverse("payments:callback")).status_code, 400)
        self.assertEqual(self.client.get(reverse("payments:callback"), {"order_id": "not-a-uuid"}).status_code, 400)

    def test_order_status(self):
        self._verify({"reference": self.reference})
        resp = self.client.get(reverse("payments:order_status", args=[self.order.order_number]))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["order"]["payment_status"], "paid")
        self.assertEqual(body["payment"]["reference"], self.reference)
        self.assertEqual(body["payment"]["status"], PaymentTransaction.STATUS_PAID)
        self.assertEqual(Decimal(body["payment"]["amount"]), Decimal("2500.00"))

    def test_order_status_unknown(self):
        resp = self.client.get(reverse("payments:order_status", args=["ORD-19990101-000000"]))
        self.assertEqual(resp.status_code, 404)

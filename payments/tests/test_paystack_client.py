import json
from unittest.mock import Mock

import requests
from django.test import SimpleTestCase, override_settings

from payments.exceptions import (
    ConfigurationError,
    DuplicateReference,
    GatewayError,
    GatewayUnavailable,
    ReferenceNotFound,
)
from payments.integrations.paystack import PaystackClient, active_secret_key

from .fakes import FakeResponse


class PaystackClientTests(SimpleTestCase):
    def setUp(self):
        self.session = Mock()
        self.client_ = PaystackClient("sk_test_abc", base_url="https://api.paystack.test/", timeout=5, session=self.session)

    def test_initialize_posts_minor_units_and_returns_data(self):
        self.session.request.return_value = FakeResponse(200, {
            "status": True,
            "data": {"authorization_url": "https://checkout.paystack.com/x", "access_code": "ac", "reference": "txn_1"},
        })
        data = self.client_.initialize_transaction(
            email="ada@example.com", amount=250000, reference="txn_1",
            callback_url="https://shop.example.com/cb?order_id=1", metadata={"order_id": "1"}, channels=["card"],
        )
        self.assertEqual(data["reference"], "txn_1")
        method, url = self.session.request.call_args.args
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://api.paystack.test/transaction/initialize")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test_abc")
        self.assertEqual(kwargs["timeout"], 5)
        body = kwargs["json"]
        self.assertEqual(body["amount"], "250000")
        self.assertEqual(json.loads(body["metadata"]), {"order_id": "1"})
        self.assertEqual(body["channels"], ["card"])
        self.assertEqual(body["callback_url"], "https://shop.example.com/cb?order_id=1")

    def test_initialize_rejects_non_integer_amount(self):
        with self.assertRaises(TypeError):
            self.client_.initialize_transaction(email="a@b.c", amount=2500.0, reference="txn_1")
        self.session.request.assert_not_called()

    def test_duplicate_reference(self):
        self.session.request.return_value = FakeResponse(400, {"status": False, "message": "Duplicate Transaction Reference"})
        with self.assertRaises(DuplicateReference):
            self.client_.initialize_transaction(email="a@b.c", amount=100, reference="txn_1")

    def test_error_classification(self):
        cases = [
            (FakeResponse(500, {"status": False, "message": "boom"}), GatewayUnavailable),
            (FakeResponse(429, {"status": False, "message": "slow down"}), GatewayUnavailable),
            (FakeResponse(502, None, text="<html>bad gateway</html>"), GatewayUnavailable),
            (FakeResponse(401, {"status": False, "message": "Invalid key"}), ConfigurationError),
            (FakeResponse(400, {"status": False, "message": "Invalid email"}), GatewayError),
            (FakeResponse(200, {"status": False, "message": "Nope"}), GatewayError),
        ]
        for response, expected in cases:
            with self.subTest(status=response.status_code, expected=expected.__name__):
                self.session.request.return_value = response
                with self.assertRaises(expected) as cm:
                    self.client_.initialize_transaction(email="a@b.c", amount=100, reference="txn_1")
                self.assertIs(type(cm.exception), expected)

    def test_network_failure_is_unavailable(self):
        self.session.request.side_effect = requests.ConnectionError("reset")
        with self.assertRaises(GatewayUnavailable):
            self.client_.verify_transaction("txn_1")

    def test_verify_returns_data(self):
        self.session.request.return_value = FakeResponse(200, {"status": True, "data": {"status": "success", "amount": 250000}})
        data = self.client_.verify_transaction("txn_1")
        self.assertEqual(data["amount"], 250000)
        method, url = self.session.request.call_args.args
        self.assertEqual(method, "GET")
        self.assertEqual(url, "https://api.paystack.test/transaction/verify/txn_1")

    def test_verify_quotes_reference(self):
        self.session.request.return_value = FakeResponse(200, {"status": True, "data": {}})
        self.client_.verify_transaction("a/b c")
        _, url = self.session.request.call_args.args
        self.assertTrue(url.endswith("/transaction/verify/a%2Fb%20c"))

    def test_verify_not_found(self):
        for response in (
            FakeResponse(404, {"status": False, "message": "Transaction reference not found"}),
            FakeResponse(400, {"status": False, "message": "Transaction reference not found", "code": "transaction_not_found"}),
        ):
            with self.subTest(status=response.status_code):
                self.session.request.return_value = response
                with self.assertRaises(ReferenceNotFound):
                    self.client_.verify_transaction("txn_missing")

    def test_requires_secret_key(self):
        with self.assertRaises(ConfigurationError):
            PaystackClient("")


class ActiveSecretKeyTests(SimpleTestCase):
    def test_test_mode_uses_test_key(self):
        self.assertEqual(active_secret_key({"TEST_MODE": True, "SECRET_KEY": "sk_test_a", "LIVE_SECRET_KEY": "sk_live_b"}), "sk_test_a")

    def test_live_mode_prefers_live_key(self):
        self.assertEqual(active_secret_key({"TEST_MODE": False, "SECRET_KEY": "sk_test_a", "LIVE_SECRET_KEY": "sk_live_b"}), "sk_live_b")

    def test_live_mode_falls_back_to_secret_key_with_warning(self):
        with self.assertLogs("payments.integrations.paystack", level="WARNING"):
            key = active_secret_key({"TEST_MODE": False, "SECRET_KEY": "sk_test_a"})
        self.assertEqual(key, "sk_test_a")

    def test_missing_or_malformed_key(self):
        for conf in ({"TEST_MODE": True}, {"TEST_MODE": True, "SECRET_KEY": "pk_test_a"}):
            with self.subTest(conf=conf):
                with self.assertRaises(ConfigurationError):
                    active_secret_key(conf)

    @override_settings(PAYSTACK={"TEST_MODE": True, "SECRET_KEY": "sk_test_x", "BASE_URL": "https://api.example.test", "TIMEOUT": 7})
    def test_from_settings(self):
        client = PaystackClient.from_settings(session=Mock())
        self.assertEqual(client.secret_key, "sk_test_x")
        self.assertEqual(client.base_url, "https://api.example.test")
        self.assertEqual(client.timeout, 7)

    @override_settings(PAYSTACK={"TEST_MODE": True, "SECRET_KEY": ""})
    def test_from_settings_without_key(self):
        with self.assertRaises(ConfigurationError):
            PaystackClient.from_settings()

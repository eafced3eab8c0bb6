from unittest.mock import Mock

from django.test import SimpleTestCase

from payments.exceptions import GatewayUnavailable, ReferenceNotFound
from payments.retry import RetryPolicy


class RetryPolicyTests(SimpleTestCase):
    def setUp(self):
        self.sleeps = []
        self.policy = RetryPolicy(attempts=3, base_delay=1.0, sleep=self.sleeps.append)

    def test_retries_then_succeeds(self):
        fn = Mock(side_effect=[GatewayUnavailable("down"), GatewayUnavailable("down"), "ok"])
        self.assertEqual(self.policy.call(fn, "txn_1"), "ok")
        self.assertEqual(fn.call_count, 3)
        fn.assert_called_with("txn_1")
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_gives_up_after_attempts(self):
        fn = Mock(side_effect=GatewayUnavailable("down"))
        with self.assertRaises(GatewayUnavailable):
            self.policy.call(fn)
        self.assertEqual(fn.call_count, 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_other_errors_are_not_retried(self):
        fn = Mock(side_effect=ReferenceNotFound("nope"))
        with self.assertRaises(ReferenceNotFound):
            self.policy.call(fn)
        self.assertEqual(fn.call_count, 1)
        self.assertEqual(self.sleeps, [])

    def test_zero_delay_does_not_sleep(self):
        policy = RetryPolicy(attempts=2, base_delay=0, sleep=self.sleeps.append)
        fn = Mock(side_effect=[GatewayUnavailable("down"), "ok"])
        self.assertEqual(policy.call(fn), "ok")
        self.assertEqual(self.sleeps, [])

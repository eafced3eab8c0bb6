from unittest.mock import patch

from django.core import mail
from django.test import TestCase, override_settings

from payments.emails import _admin_recipients, send_payment_confirmation

from .fakes import make_catalog, make_order


class PaymentConfirmationEmailTests(TestCase):
    def setUp(self):
        self.order = make_order(make_catalog())

    def test_sends_receipt_and_admin_notice(self):
        send_payment_confirmation(order=self.order)
        self.assertEqual(len(mail.outbox), 2)
        receipt, notice = mail.outbox
        self.assertEqual(receipt.to, ["ada@example.com"])
        self.assertIn("Sourdough x2", receipt.body)
        self.assertIn("2500.00", receipt.body)
        self.assertEqual(receipt.alternatives[0][1], "text/html")
        self.assertEqual(notice.to, ["ops@example.com"])
        self.assertIn(self.order.order_number, notice.body)

    @override_settings(PAYMENTS_ADMIN_EMAILS="Ops@example.com, ops@example.com,, sales@example.com")
    def test_admin_recipients_are_deduplicated(self):
        self.assertEqual(_admin_recipients(), ["Ops@example.com", "sales@example.com"])

    def test_mail_failure_is_logged_not_raised(self):
        with patch("payments.emails.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            with self.assertLogs("payments.emails", level="ERROR"):
                send_payment_confirmation(order=self.order)
        self.assertEqual(mail.outbox, [])

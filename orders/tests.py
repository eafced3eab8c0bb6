from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings

from .exceptions import InvalidOrderItems, OrderCreationFailed, ValidationError
from .models import AuditLog, CustomerAccount, DeliveryZone, Order, OrderItem, Product
from .pricing import compute_authoritative_amount, from_minor_units, reconcile_order_amount, to_minor_units
from .services import create_or_get_order, get_or_create_customer
from .utils import cart_fingerprint


class CatalogMixin:
    def setUp(self):
        self.bread = Product.objects.create(name="Sourdough", price=Decimal("1000.00"))
        self.jam = Product.objects.create(name="Jam", price=Decimal("500.00"))
        self.zone = DeliveryZone.objects.create(name="Lekki", base_fee=Decimal("300.00"))
        self.customer = {"name": "Ada Obi", "email": "ada@example.com", "phone": "08030000000"}
        self.items = [
            {"product_id": self.bread.pk, "quantity": 2},
            {"product_id": self.jam.pk, "quantity": 1},
        ]
        self.pickup = {"type": "pickup"}


class CreateOrGetOrderTests(CatalogMixin, TestCase):
    def test_creates_order_with_catalog_prices(self):
        order, created = create_or_get_order("chk-1", self.customer, self.items, self.pickup)
        self.assertTrue(created)
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertTrue(order.order_number.startswith("ORD-"))
        self.assertEqual(order.items.count(), 2)
        line = order.items.get(product=self.bread)
        self.assertEqual(line.unit_price, Decimal("1000.00"))
        self.assertEqual(line.line_total, Decimal("2000.00"))

    def test_same_key_returns_existing_order(self):
        first, created = create_or_get_order("chk-1", self.customer, self.items, self.pickup)
        second, created_again = create_or_get_order(
            "chk-1", {**self.customer, "name": "Someone Else"}, self.items[:1], self.pickup,
        )
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(second.customer_name, "Ada Obi")
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderItem.objects.count(), 2)

    def test_losing_concurrent_insert_returns_winner(self):
        winner, _ = create_or_get_order("chk-race", self.customer, self.items, self.pickup)
        # the loser's fast-path lookup ran before the winner committed
        with patch("orders.services._find_active_order", side_effect=[None, winner]):
            order, created = create_or_get_order("chk-race", self.customer, self.items[:1], self.pickup)
        self.assertFalse(created)
        self.assertEqual(order.pk, winner.pk)
        # the winner's items stand; the loser's payload is discarded
        self.assertEqual(order.items.count(), 2)
        self.assertEqual(OrderItem.objects.count(), 2)
        self.assertEqual(Order.objects.filter(idempotency_key="chk-race").count(), 1)

    def test_insert_conflict_without_winner_fails(self):
        create_or_get_order("chk-race", self.customer, self.items, self.pickup)
        with patch("orders.services._find_active_order", return_value=None):
            with self.assertRaises(OrderCreationFailed):
                create_or_get_order("chk-race", self.customer, self.items, self.pickup)

    def test_cancelled_order_does_not_block_key(self):
        first, _ = create_or_get_order("chk-1", self.customer, self.items, self.pickup)
        Order.objects.filter(pk=first.pk).update(status=Order.STATUS_CANCELLED)
        second, created = create_or_get_order("chk-1", self.customer, self.items, self.pickup)
        self.assertTrue(created)
        self.assertNotEqual(first.pk, second.pk)

    def test_missing_key_falls_back_to_cart_fingerprint(self):
        first, _ = create_or_get_order(None, self.customer, self.items, self.pickup)
        second, created = create_or_get_order("", self.customer, list(reversed(self.items)), self.pickup)
        self.assertFalse(created)
        self.assertEqual(first.pk, second.pk)
        self.assertTrue(first.idempotency_key.startswith("cart-"))

    def test_client_totals_are_kept_provisionally(self):
        order, _ = create_or_get_order(
            "chk-1", self.customer, self.items, self.pickup,
            client_totals={"total_amount": "1.00", "delivery_fee": "0"},
        )
        self.assertEqual(order.client_total, Decimal("1.00"))
        self.assertEqual(order.total_amount, Decimal("1.00"))
        self.assertEqual(order.items_subtotal, Decimal("2500.00"))

    def test_validation_errors(self):
        cases = [
            ({**self.customer, "email": ""}, self.items, self.pickup),
            (self.customer, [], self.pickup),
            (self.customer, [{"product_id": self.bread.pk, "quantity": 0}], self.pickup),
            (self.customer, [{"product_id": 99999, "quantity": 1}], self.pickup),
            (self.customer, [{"product_id": "abc", "quantity": 1}], self.pickup),
            (self.customer, self.items, {"type": "teleport"}),
            (self.customer, self.items, {}),
            (self.customer, self.items, {"type": "delivery"}),
            ({**self.customer, "email": 12345}, self.items, self.pickup),
            ({**self.customer, "name": ["Ada"]}, self.items, self.pickup),
            (self.customer, ["bread"], self.pickup),
            (self.customer, {"product_id": self.bread.pk}, self.pickup),
            (self.customer, [{"product_id": self.bread.pk, "quantity": "two"}], self.pickup),
            (self.customer, self.items, {"type": 7}),
            ("ada@example.com", self.items, self.pickup),
        ]
        for customer, items, fulfillment in cases:
            with self.subTest(customer=customer, items=items, fulfillment=fulfillment):
                with self.assertRaises(ValidationError):
                    create_or_get_order("chk-bad", customer, items, fulfillment)
        self.assertFalse(Order.objects.exists())

    def test_unavailable_product_is_rejected(self):
        self.jam.is_available = False
        self.jam.save()
        with self.assertRaises(InvalidOrderItems):
            create_or_get_order("chk-1", self.customer, self.items, self.pickup)

    def test_invalid_client_total_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_or_get_order("chk-1", self.customer, self.items, self.pickup, client_totals={"total_amount": "lots"})

    def test_non_finite_client_totals_are_rejected(self):
        for value in ("NaN", "sNaN", "Infinity", "-inf"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    create_or_get_order("chk-1", self.customer, self.items, self.pickup, client_totals={"total_amount": value})
        self.assertFalse(Order.objects.exists())

    def test_malformed_cart_without_key_is_rejected_before_fingerprinting(self):
        with self.assertRaises(InvalidOrderItems):
            create_or_get_order(None, self.customer, [{"product_id": self.bread.pk, "quantity": "two"}], self.pickup)
        with self.assertRaises(ValidationError):
            create_or_get_order(None, {**self.customer, "email": 12345}, self.items, self.pickup)
        self.assertFalse(Order.objects.exists())


class CustomerTests(TestCase):
    def test_lookup_is_case_insensitive(self):
        first = get_or_create_customer("Ada", "Ada@Example.com")
        second = get_or_create_customer("Another Name", "  ada@example.com ")
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(CustomerAccount.objects.count(), 1)
        second.refresh_from_db()
        self.assertEqual(second.name, "Ada")

    def test_email_required(self):
        with self.assertRaises(ValidationError):
            get_or_create_customer("Ada", None)


class CartFingerprintTests(TestCase):
    def test_ignores_item_order_and_email_case(self):
        a = cart_fingerprint("Ada@Example.com", "pickup", [(1, 2), (2, 1)])
        b = cart_fingerprint("ada@example.com", "PICKUP", [(2, 1), (1, 2)])
        self.assertEqual(a, b)

    def test_differs_by_quantity(self):
        a = cart_fingerprint("ada@example.com", "pickup", [(1, 2)])
        b = cart_fingerprint("ada@example.com", "pickup", [(1, 3)])
        self.assertNotEqual(a, b)


class AmountAuthorityTests(CatalogMixin, TestCase):
    def test_pickup_total(self):
        order, _ = create_or_get_order("chk-1", self.customer, self.items, self.pickup)
        amount = compute_authoritative_amount(order)
        self.assertEqual(amount.items_subtotal, Decimal("2500.00"))
        self.assertEqual(amount.fulfillment_fee, Decimal("0.00"))
        self.assertEqual(amount.total, Decimal("2500.00"))
        self.assertEqual(amount.total_minor, 250000)

    def test_delivery_total_includes_zone_fee(self):
        order, _ = create_or_get_order(
            "chk-1", self.customer, self.items, {"type": "delivery", "delivery_zone_id": self.zone.pk},
        )
        amount = compute_authoritative_amount(order)
        self.assertEqual(amount.fulfillment_fee, Decimal("300.00"))
        self.assertEqual(amount.total, Decimal("2800.00"))
        self.assertEqual(amount.total_minor, 280000)

    def test_client_fee_is_ignored(self):
        order, _ = create_or_get_order(
            "chk-1", self.customer, self.items,
            {"type": "delivery", "delivery_zone_id": self.zone.pk},
            client_totals={"total_amount": "2500.00", "delivery_fee": "0.00"},
        )
        amount = reconcile_order_amount(order)
        self.assertEqual(amount.total, Decimal("2800.00"))
        order.refresh_from_db()
        self.assertEqual(order.fulfillment_fee, Decimal("300.00"))
        self.assertEqual(order.total_amount, Decimal("2800.00"))

    def test_drift_is_corrected_and_audited(self):
        order, _ = create_or_get_order(
            "chk-1", self.customer, self.items, self.pickup, client_totals={"total_amount": "100.00"},
        )
        reconcile_order_amount(order)
        order.refresh_from_db()
        self.assertEqual(order.total_amount, Decimal("2500.00"))
        self.assertEqual(order.client_total, Decimal("100.00"))
        log = AuditLog.objects.get(action="amount_corrected")
        self.assertEqual(log.order_id, order.pk)
        self.assertEqual(log.new_values["previous"]["total_amount"], "100.00")

    def test_drift_within_tolerance_is_left_alone(self):
        order, _ = create_or_get_order(
            "chk-1", self.customer, self.items, self.pickup, client_totals={"total_amount": "2500.50"},
        )
        amount = reconcile_order_amount(order)
        order.refresh_from_db()
        self.assertEqual(order.total_amount, Decimal("2500.50"))
        self.assertEqual(amount.total, Decimal("2500.00"))
        self.assertFalse(AuditLog.objects.filter(action="amount_corrected").exists())

    @override_settings(ORDERS_AMOUNT_TOLERANCE=Decimal("0.00"))
    def test_tolerance_comes_from_settings(self):
        order, _ = create_or_get_order(
            "chk-1", self.customer, self.items, self.pickup, client_totals={"total_amount": "2500.50"},
        )
        reconcile_order_amount(order)
        order.refresh_from_db()
        self.assertEqual(order.total_amount, Decimal("2500.00"))

    def test_delivery_without_fee_is_flagged(self):
        order, _ = create_or_get_order(
            "chk-1", self.customer, self.items, {"type": "delivery", "address": {"line1": "1 Marina"}},
        )
        with self.assertLogs("orders.pricing", level="WARNING"):
            amount = reconcile_order_amount(order)
        self.assertEqual(amount.total, Decimal("2500.00"))
        self.assertTrue(AuditLog.objects.filter(action="delivery_fee_missing", order=order).exists())

    def test_minor_unit_conversion(self):
        self.assertEqual(to_minor_units(Decimal("2500.00")), 250000)
        self.assertEqual(to_minor_units("10.005"), 1001)
        self.assertEqual(from_minor_units(280000), Decimal("2800.00"))

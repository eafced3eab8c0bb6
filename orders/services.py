import logging
from decimal import Decimal, InvalidOperation

from django.db import DatabaseError, IntegrityError, transaction

from .exceptions import InvalidOrderItems, OrderCreationFailed, ValidationError
from .models import CustomerAccount, DeliveryZone, Order, OrderItem, PickupPoint, Product
from .utils import cart_fingerprint, gen_order_number, normalize_email

logger = logging.getLogger(__name__)


def _text(value, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {what}: {value!r}")
    return value.strip()


def _as_int(value, what: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidOrderItems(f"Invalid {what}: {value!r}")


def _client_decimal(value, what: str) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise ValueError(value)
        return amount.quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {what}: {value!r}")


def get_or_create_customer(name: str | None, email: str | None, phone: str | None = None) -> CustomerAccount:
    """Insert-or-fetch a customer account by case-insensitive email.

    An existing account is returned untouched: checkout input never
    overwrites a customer's stored details.
    """
    email_norm = normalize_email(email)
    if not email_norm:
        raise ValidationError("Customer email is required")

    customer = CustomerAccount.objects.filter(email_norm=email_norm).first()
    if customer is not None:
        return customer
    try:
        with transaction.atomic():
            customer = CustomerAccount.objects.create(
                name=(name or "").strip(),
                email=(email or "").strip(),
                email_norm=email_norm,
                phone=(phone or "").strip(),
            )
    except IntegrityError:
        # another checkout for the same email inserted first
        customer = CustomerAccount.objects.filter(email_norm=email_norm).first()
        if customer is None:
            raise OrderCreationFailed(f"Failed to create customer account for {email_norm}")
        return customer
    logger.info("Created customer account %s", customer.pk)
    return customer


def _parse_items(items) -> list[tuple]:
    """Shape-check raw cart lines into ``(product_id, quantity, customizations)``."""
    if not items:
        raise InvalidOrderItems("Order must contain at least one item")
    if not isinstance(items, list):
        raise InvalidOrderItems("Items must be a list")

    wanted = []
    for pos, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise InvalidOrderItems(f"Item {pos} is malformed")
        product_id = _as_int(item.get("product_id"), f"product_id for item {pos}")
        quantity = _as_int(item.get("quantity"), f"quantity for item {pos}")
        if quantity <= 0:
            raise InvalidOrderItems(f"Item {pos}: quantity must be positive")
        wanted.append((product_id, quantity, item.get("customizations")))
    return wanted


def _resolve_items(wanted) -> list[OrderItem]:
    products = Product.objects.in_bulk([pid for pid, _, _ in wanted])
    resolved = []
    for product_id, quantity, customizations in wanted:
        product = products.get(product_id)
        if product is None or not product.is_available:
            raise InvalidOrderItems(f"Product {product_id} is not available")
        resolved.append(OrderItem(
            product=product,
            product_name=product.name,
            quantity=quantity,
            unit_price=product.price,
            line_total=product.price * quantity,
            customizations=customizations,
        ))
    return resolved


def _resolve_fulfillment(fulfillment: dict):
    ftype = str(fulfillment.get("type") or "").strip().lower()
    if not ftype:
        raise ValidationError("Fulfillment type is required")
    if ftype not in (Order.FULFILLMENT_DELIVERY, Order.FULFILLMENT_PICKUP):
        raise ValidationError(f"Unsupported fulfillment type: {ftype}")

    zone = pickup = None
    address = fulfillment.get("address") or None
    if ftype == Order.FULFILLMENT_DELIVERY:
        zone_id = fulfillment.get("delivery_zone_id")
        if zone_id:
            zone = DeliveryZone.objects.filter(pk=_as_int(zone_id, "delivery_zone_id"), is_active=True).first()
            if zone is None:
                raise InvalidOrderItems(f"Delivery zone {zone_id} is not available")
        if zone is None and not address:
            raise ValidationError("Delivery orders need a delivery address or zone")
    else:
        point_id = fulfillment.get("pickup_point_id")
        if point_id:
            pickup = PickupPoint.objects.filter(pk=_as_int(point_id, "pickup_point_id"), is_active=True).first()
            if pickup is None:
                raise InvalidOrderItems(f"Pickup point {point_id} is not available")
    return ftype, zone, pickup, address


def _find_active_order(idempotency_key: str) -> Order | None:
    return Order.objects.active().filter(idempotency_key=idempotency_key).first()


def create_or_get_order(idempotency_key, customer_info, items, fulfillment, *, client_totals=None):
    """Create the order for a checkout submission, or return the one that already exists.

    Returns ``(order, created)``. The insert relies on the unique constraint
    over active orders' ``idempotency_key``: a racing duplicate that loses the
    insert re-reads and returns the winner, whose customer details and items
    are kept as they are.

    ``client_totals`` (``total_amount``/``delivery_fee``) are recorded as
    submitted; :func:`orders.pricing.reconcile_order_amount` replaces them
    with the authoritative figures before any gateway call.
    """
    customer_info = customer_info or {}
    fulfillment = fulfillment or {}
    if not isinstance(customer_info, dict):
        raise ValidationError("Customer details are malformed")
    if not isinstance(fulfillment, dict):
        raise ValidationError("Fulfillment details are malformed")
    email = _text(customer_info.get("email"), "email")
    name = _text(customer_info.get("name"), "name")
    phone = _text(customer_info.get("phone"), "phone")
    if not email:
        raise ValidationError("Customer email is required")
    wanted = _parse_items(items)
    ftype = _text(fulfillment.get("type"), "fulfillment type")
    if not ftype:
        raise ValidationError("Fulfillment type is required")

    key = str(idempotency_key or "").strip() or cart_fingerprint(
        email, ftype, [(product_id, quantity) for product_id, quantity, _ in wanted],
    )

    existing = _find_active_order(key)
    if existing is not None:
        logger.warning("Duplicate checkout %s resolved to existing order %s", key, existing.order_number)
        return existing, False

    order_items = _resolve_items(wanted)
    ftype, zone, pickup, address = _resolve_fulfillment(fulfillment)

    client_totals = client_totals or {}
    client_total = _client_decimal(client_totals.get("total_amount"), "total_amount")
    client_fee = _client_decimal(client_totals.get("delivery_fee"), "delivery_fee")
    subtotal = sum((item.line_total for item in order_items), Decimal("0.00"))
    fee = client_fee if client_fee is not None else Decimal("0.00")

    customer = get_or_create_customer(name, email, phone)

    try:
        with transaction.atomic():
            order = Order.objects.create(
                order_number=gen_order_number(),
                idempotency_key=key,
                customer=customer,
                customer_name=name or customer.name,
                customer_email=normalize_email(email),
                customer_phone=phone,
                fulfillment_type=ftype,
                delivery_zone=zone,
                pickup_point=pickup,
                delivery_address=address,
                items_subtotal=subtotal,
                fulfillment_fee=fee,
                total_amount=client_total if client_total is not None else subtotal + fee,
                client_total=client_total,
            )
            for item in order_items:
                item.order = order
            OrderItem.objects.bulk_create(order_items)
    except IntegrityError as exc:
        winner = _find_active_order(key)
        if winner is None:
            logger.exception("Order insert failed for checkout %s", key)
            raise OrderCreationFailed(f"Order creation failed: {exc}") from exc
        logger.warning("Concurrent checkout %s lost the insert; returning order %s", key, winner.order_number)
        return winner, False
    except DatabaseError as exc:
        logger.exception("Order insert failed for checkout %s", key)
        raise OrderCreationFailed(f"Order creation failed: {exc}") from exc

    logger.info("Created order %s (%s items) for customer %s", order.order_number, len(order_items), customer.pk)
    return order, True

"""
Order Service Layer - Atomic order creation logic.

Implements fail-fast pattern inside one transaction:
1. Validate line items, shipping address and payment hint (no writes yet)
2. Load the referenced products that are active
3. Reserve stock for each line item in order with a conditional decrement
4. Compute the total from catalog prices
5. Persist the order as PENDING with its items and snapshots

Any exception raised in steps 2-5 rolls the whole transaction back, so a
failed attempt leaves no stock decremented and no order behind.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from accounts.identity import CallerIdentity
from core.exceptions import (
    AuthRequiredError,
    EmptyOrderItemsError,
    InvalidPaymentDetailsError,
    InvalidQuantityError,
    InvalidShippingAddressError,
    NoRegionOnProfileError,
    OrderNotFoundError,
    PaymentFieldsRejectedError,
    ProductUnavailableError,
)
from inventory.models import Product
from inventory.services import reserve
from .models import Order, OrderItem
from .pricing import LineItem, compute_total

logger = logging.getLogger(__name__)

QUANTITY_STEP_GRAMS = 50

REQUIRED_ADDRESS_FIELDS = ('line1', 'city', 'postal_code')
OPTIONAL_ADDRESS_FIELDS = ('line2', 'notes')

REJECTED_PAYMENT_FIELDS = ('card_number', 'cvc')


def _is_valid_product_ref(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_order_items(items) -> List[LineItem]:
    """
    Validate order items structure.

    Args:
        items: List of dicts with 'product_id' and 'quantity' (grams)

    Returns:
        Line items in request order

    Raises:
        EmptyOrderItemsError: If there are no items
        ProductUnavailableError: If a product reference is malformed
        InvalidQuantityError: If a quantity is not a positive multiple of 50
    """
    if not items:
        raise EmptyOrderItemsError()

    line_items = []
    for idx, item in enumerate(items):
        product_id = item.get('product_id')
        quantity = item.get('quantity')

        if not _is_valid_product_ref(product_id):
            raise ProductUnavailableError([product_id])

        if (
            isinstance(quantity, bool)
            or not isinstance(quantity, int)
            or quantity <= 0
            or quantity % QUANTITY_STEP_GRAMS != 0
        ):
            raise InvalidQuantityError(idx, quantity)

        line_items.append(LineItem(product_id=product_id, quantity_grams=quantity))

    return line_items


def build_shipping_snapshot(address: Optional[Dict]) -> Optional[Dict]:
    """Copy the allowed address fields; line1, city and postal_code are required."""
    if not address:
        return None

    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not str(address.get(f) or '').strip()]
    if missing:
        raise InvalidShippingAddressError(
            f"Shipping address is missing required fields: {', '.join(missing)}"
        )

    snapshot = {}
    for field in REQUIRED_ADDRESS_FIELDS + OPTIONAL_ADDRESS_FIELDS:
        snapshot[field] = str(address.get(field) or '').strip()
    return snapshot


def build_payment_snapshot(payment: Optional[Dict], today: date = None) -> Optional[Dict]:
    """
    Keep only brand, last 4 digits, expiry and cardholder name.

    Raises:
        PaymentFieldsRejectedError: If a card number or CVC was sent
        InvalidPaymentDetailsError: Bad last4 or expiry
    """
    if not payment:
        return None

    rejected = [f for f in REJECTED_PAYMENT_FIELDS if payment.get(f) not in (None, '')]
    if rejected:
        raise PaymentFieldsRejectedError(rejected)

    today = today or timezone.localdate()
    snapshot = {
        'brand': str(payment.get('brand') or '').strip(),
        'last4': '',
        'exp_month': None,
        'exp_year': None,
        'name_on_card': str(payment.get('name_on_card') or '').strip(),
    }

    last4 = payment.get('last4')
    if last4 not in (None, ''):
        last4 = str(last4).strip()[-4:]
        if len(last4) != 4 or not last4.isdigit():
            raise InvalidPaymentDetailsError("last4 must be the last 4 digits of the card")
        snapshot['last4'] = last4

    exp_month = payment.get('exp_month')
    if exp_month not in (None, ''):
        try:
            exp_month = int(exp_month)
        except (TypeError, ValueError):
            raise InvalidPaymentDetailsError("exp_month must be a number")
        if not 1 <= exp_month <= 12:
            raise InvalidPaymentDetailsError("exp_month must be between 1 and 12")
        snapshot['exp_month'] = exp_month

    exp_year = payment.get('exp_year')
    if exp_year not in (None, ''):
        try:
            exp_year = int(exp_year)
        except (TypeError, ValueError):
            raise InvalidPaymentDetailsError("exp_year must be a number")
        if exp_year < today.year:
            raise InvalidPaymentDetailsError("Card has expired")
        snapshot['exp_year'] = exp_year

    return snapshot


def _active_prices(product_ids) -> Dict[int, Decimal]:
    return dict(
        Product.objects.filter(id__in=set(product_ids), is_active=True)
        .values_list('id', 'price_per_100g')
    )


def create_order(
    caller: Optional[CallerIdentity],
    items: List[Dict],
    shipping_address: Optional[Dict] = None,
    payment: Optional[Dict] = None,
) -> Order:
    """
    Create an order with atomic transaction handling.

    Implements fail-fast pattern:
    - Validation happens before any write
    - Stock is reserved item by item; the first shortfall aborts the order
    - No partial reservation survives a failed attempt

    Args:
        caller: Identity of the customer (region comes from their profile)
        items: List of dicts with 'product_id' and 'quantity' in grams
        shipping_address: Optional address fields
        payment: Optional payment hint fields (never card number or CVC)

    Returns:
        The persisted PENDING order

    Raises:
        AuthRequiredError, OrderValidationError subclasses, InsufficientStockError
    """
    if caller is None:
        raise AuthRequiredError()
    if not caller.region:
        raise NoRegionOnProfileError(caller.user_id)

    line_items = validate_order_items(items)
    shipping_snapshot = build_shipping_snapshot(shipping_address)
    payment_snapshot = build_payment_snapshot(payment)
    region = caller.region

    with transaction.atomic():
        prices = _active_prices(li.product_id for li in line_items)
        missing = {li.product_id for li in line_items} - set(prices)
        if missing:
            logger.warning(f"Order rejected for user {caller.user_id}: unavailable products {missing}")
            raise ProductUnavailableError(missing)

        for li in line_items:
            reserve(li.product_id, region, li.quantity_grams)

        total_amount = compute_total(line_items, prices)

        order = Order(
            user_id=caller.user_id,
            region=region,
            status=Order.Status.PENDING,
            total_amount=total_amount,
            shipping_address=shipping_snapshot,
            payment_snapshot=payment_snapshot,
        )
        order.stamp_status(Order.Status.PENDING)
        order.save()

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product_id=li.product_id,
                quantity_grams=li.quantity_grams,
                price_per_100g=prices[li.product_id],
            )
            for li in line_items
        ])

        logger.info(
            f"Order {order.order_number} placed by user {caller.user_id} in {region}: "
            f"{len(line_items)} items, total ${total_amount}"
        )

        transaction.on_commit(lambda: _queue_confirmation(order.id))

    return order


def _queue_confirmation(order_id: int) -> None:
    try:
        from .tasks import send_order_confirmation
        send_order_confirmation.delay(order_id)
        logger.info(f"Triggered confirmation task for order #{order_id}")
    except Exception as e:
        # Don't fail the order if task queuing fails
        logger.error(f"Failed to queue confirmation task: {e}")


def get_order_for_caller(caller: Optional[CallerIdentity], order_id, own_only: bool = False) -> Order:
    """
    Load an order with items and notes.

    Customers only see their own orders; admins see any order unless
    ``own_only`` is set.

    Raises:
        AuthRequiredError: No caller
        OrderNotFoundError: Unknown id or another customer's order
    """
    if caller is None:
        raise AuthRequiredError()

    queryset = Order.objects.select_related('user').prefetch_related(
        'items__product', 'admin_notes'
    )
    if own_only or not caller.is_admin:
        queryset = queryset.filter(user_id=caller.user_id)

    try:
        return queryset.get(pk=order_id)
    except Order.DoesNotExist:
        raise OrderNotFoundError(order_id)


def orders_for_caller(caller: CallerIdentity, status: str = None):
    """Queryset of the caller's own orders, newest first."""
    queryset = Order.objects.filter(user_id=caller.user_id).prefetch_related('items')
    if status:
        queryset = queryset.filter(status=status)
    return queryset.order_by('-created_at', '-id')


def dashboard_stats() -> Dict:
    """Counters for the admin dashboard."""
    stats = Order.objects.aggregate(
        orders=Count('id'),
        pending_orders=Count('id', filter=Q(status=Order.Status.PENDING)),
        delivered_orders=Count('id', filter=Q(status=Order.Status.DELIVERED)),
        cancelled_orders=Count('id', filter=Q(status=Order.Status.CANCELLED)),
        delivered_revenue=Sum('total_amount', filter=Q(status=Order.Status.DELIVERED)),
    )
    stats['products'] = Product.objects.count()
    stats['users'] = get_user_model().objects.count()
    stats['delivered_revenue'] = str(stats['delivered_revenue'] or Decimal('0.00'))
    return stats

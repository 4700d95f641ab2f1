"""
Tests for order creation, status transitions and auto-progress.

Test Cases:
1. Lifecycle table and pricing arithmetic
2. Atomic order creation (fail fast, full rollback)
3. Order number format and stability
4. Conditional status transitions (advance, cancel, strict update, batch)
5. Auto-progress scheduler due-selection and caps
6. Celery tasks and the progress_orders command
7. Order API endpoints and error mapping
"""
import re
import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import OperationalError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from accounts.identity import CallerIdentity
from accounts.models import Profile
from core.durations import parse_duration
from core.exceptions import (
    AlreadyTerminalError,
    AuthRequiredError,
    BatchTooLargeError,
    ConcurrentModificationError,
    EmptyOrderItemsError,
    InsufficientStockError,
    InvalidPaymentDetailsError,
    InvalidQuantityError,
    InvalidShippingAddressError,
    InvalidStatusError,
    InvalidTransitionError,
    NoRegionOnProfileError,
    OrderNotFoundError,
    OrderValidationError,
    PaymentFieldsRejectedError,
    ProductUnavailableError,
)
from inventory.models import Product, Stock
from orders import lifecycle
from orders.models import Order, OrderItem, OrderNote, generate_order_number
from orders.pricing import LineItem, compute_total
from orders.progressor import OrderProgressor, ProgressorConfig
from orders.services import create_order, get_order_for_caller
from orders.tasks import progress_due_orders, send_order_confirmation
from orders.transitions import (
    advance_many,
    advance_order,
    cancel_order,
    claim_transition,
    update_status,
)

User = get_user_model()

ORDER_NUMBER_RE = re.compile(r'^ORD-\d{8}-[0-9A-Z]{4}$')


def make_user(username, region='east', is_staff=False):
    user = User.objects.create_user(username=username, password='pass1234', is_staff=is_staff)
    Profile.objects.create(user=user, region=region)
    return user


def make_order(user, status=lifecycle.PENDING, entered_at=None, region='east'):
    """Order sitting in ``status``, entered at ``entered_at`` (default now)."""
    entered_at = entered_at or timezone.now()
    order = Order(user=user, region=region, status=status, total_amount=Decimal('1.00'))
    if status == lifecycle.CANCELLED:
        order.stamp_status(lifecycle.PENDING, entered_at)
        order.stamp_status(lifecycle.CANCELLED, entered_at)
    else:
        for step in lifecycle.STATUS_FLOW[:lifecycle.STATUS_FLOW.index(status) + 1]:
            order.stamp_status(step, entered_at)
    order.save()
    return order


# =============================================================================
# Pure rules
# =============================================================================

class LifecycleTestCase(SimpleTestCase):

    def test_next_status_follows_linear_chain(self):
        self.assertEqual(lifecycle.next_status('pending'), 'confirmed')
        self.assertEqual(lifecycle.next_status('confirmed'), 'preparing')
        self.assertEqual(lifecycle.next_status('preparing'), 'out_for_delivery')
        self.assertEqual(lifecycle.next_status('out_for_delivery'), 'delivered')

    def test_terminal_and_unknown_have_no_successor(self):
        self.assertIsNone(lifecycle.next_status('delivered'))
        self.assertIsNone(lifecycle.next_status('cancelled'))
        self.assertIsNone(lifecycle.next_status('shipped'))

    def test_terminal_statuses(self):
        self.assertTrue(lifecycle.is_terminal('delivered'))
        self.assertTrue(lifecycle.is_terminal('cancelled'))
        self.assertFalse(lifecycle.is_terminal('out_for_delivery'))

    def test_timestamp_field_rejects_unknown_status(self):
        self.assertEqual(lifecycle.timestamp_field('out_for_delivery'), 'out_for_delivery_at')
        with self.assertRaises(ValueError):
            lifecycle.timestamp_field('shipped')


class PricingTestCase(SimpleTestCase):

    def test_item_cost_per_100_grams(self):
        """$2.00 per 100 g, 350 g -> $7.00"""
        total = compute_total([LineItem(1, 350)], {1: Decimal('2.00')})
        self.assertEqual(total, Decimal('7.00'))

    def test_two_items_sum(self):
        total = compute_total([LineItem(1, 350), LineItem(1, 350)], {1: Decimal('2.00')})
        self.assertEqual(total, Decimal('14.00'))

    def test_rounds_half_up_at_the_cent(self):
        # 0.25 / 100 * 50 = 0.125 -> 0.13
        total = compute_total([LineItem(1, 50)], {1: Decimal('0.25')})
        self.assertEqual(total, Decimal('0.13'))

    def test_missing_price_is_product_unavailable(self):
        with self.assertRaises(ProductUnavailableError) as ctx:
            compute_total([LineItem(1, 100), LineItem(2, 100)], {1: Decimal('1.00')})
        self.assertEqual(ctx.exception.product_ids, [2])

    def test_rejects_non_positive_quantity(self):
        with self.assertRaises(InvalidQuantityError):
            compute_total([LineItem(1, 0)], {1: Decimal('1.00')})

    def test_rejects_empty_items(self):
        with self.assertRaises(EmptyOrderItemsError):
            compute_total([], {})


# =============================================================================
# Order creation
# =============================================================================

class OrderCreationTestCase(TestCase):
    """Test cases for order transaction logic."""

    def setUp(self):
        self.user = make_user('alice', region='east')
        self.caller = CallerIdentity.from_user(self.user)

        self.apples = Product.objects.create(name='Apples', price_per_100g=Decimal('2.00'))
        self.cheese = Product.objects.create(name='Cheddar', price_per_100g=Decimal('3.50'))
        self.retired = Product.objects.create(
            name='Old Stock', price_per_100g=Decimal('1.00'), is_active=False
        )

        self.apples_east = Stock.objects.create(product=self.apples, region='east', quantity_grams=1000)
        self.cheese_east = Stock.objects.create(product=self.cheese, region='east', quantity_grams=100)
        self.retired_east = Stock.objects.create(product=self.retired, region='east', quantity_grams=500)
        self.apples_west = Stock.objects.create(product=self.apples, region='west', quantity_grams=1000)

    def test_order_created_pending_with_snapshot_total(self):
        """
        Given: Enough stock in the caller's region
        When: Creating an order
        Then: Order is PENDING, total comes from catalog prices, stock is deducted
        """
        items = [
            {'product_id': self.apples.id, 'quantity': 350},
            {'product_id': self.cheese.id, 'quantity': 100},
        ]

        order = create_order(self.caller, items)

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.region, 'east')
        # 2.00 * 3.5 + 3.50 * 1 = 10.50
        self.assertEqual(order.total_amount, Decimal('10.50'))
        self.assertIsNotNone(order.pending_at)
        self.assertEqual(list(order.status_timestamps), ['pending'])

        order_items = list(order.items.all())
        self.assertEqual([i.product_id for i in order_items], [self.apples.id, self.cheese.id])
        self.assertEqual(order_items[0].price_per_100g, Decimal('2.00'))

        self.apples_east.refresh_from_db()
        self.cheese_east.refresh_from_db()
        self.apples_west.refresh_from_db()
        self.assertEqual(self.apples_east.quantity_grams, 650)
        self.assertEqual(self.cheese_east.quantity_grams, 0)
        self.assertEqual(self.apples_west.quantity_grams, 1000)

    def test_inactive_product_leaves_stock_untouched(self):
        """
        Given: Apples have 100 g in east, and the second product is inactive
        When: Ordering 50 g of apples plus 50 g of the inactive product
        Then: ProductUnavailable, apples still at 100 g, no order exists
        """
        Stock.objects.filter(pk=self.apples_east.pk).update(quantity_grams=100)
        items = [
            {'product_id': self.apples.id, 'quantity': 50},
            {'product_id': self.retired.id, 'quantity': 50},
        ]
        with self.assertRaises(ProductUnavailableError) as ctx:
            create_order(self.caller, items)

        self.assertEqual(ctx.exception.product_ids, [self.retired.id])
        self.apples_east.refresh_from_db()
        self.assertEqual(self.apples_east.quantity_grams, 100)
        self.assertFalse(Order.objects.exists())

    def test_insufficient_stock_rolls_back_earlier_reservations(self):
        """
        Given: Cheese has only 100 g in east
        When: Ordering apples first, then 150 g of cheese
        Then: InsufficientStock; the apples reservation is rolled back
        """
        items = [
            {'product_id': self.apples.id, 'quantity': 500},
            {'product_id': self.cheese.id, 'quantity': 150},
        ]

        with self.assertRaises(InsufficientStockError) as ctx:
            create_order(self.caller, items)

        self.assertEqual(ctx.exception.product_id, self.cheese.id)
        self.assertEqual(ctx.exception.region, 'east')
        self.apples_east.refresh_from_db()
        self.cheese_east.refresh_from_db()
        self.assertEqual(self.apples_east.quantity_grams, 1000)
        self.assertEqual(self.cheese_east.quantity_grams, 100)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderItem.objects.exists())

    def test_no_stock_row_in_region_is_insufficient(self):
        bananas = Product.objects.create(name='Bananas', price_per_100g=Decimal('0.80'))
        Stock.objects.create(product=bananas, region='west', quantity_grams=1000)

        with self.assertRaises(InsufficientStockError):
            create_order(self.caller, [{'product_id': bananas.id, 'quantity': 100}])

    def test_order_with_exact_stock(self):
        order = create_order(self.caller, [{'product_id': self.cheese.id, 'quantity': 100}])

        self.assertEqual(order.status, Order.Status.PENDING)
        self.cheese_east.refresh_from_db()
        self.assertEqual(self.cheese_east.quantity_grams, 0)

    def test_repeated_product_is_reserved_per_line(self):
        items = [
            {'product_id': self.apples.id, 'quantity': 350},
            {'product_id': self.apples.id, 'quantity': 350},
        ]

        order = create_order(self.caller, items)

        self.assertEqual(order.total_amount, Decimal('14.00'))
        self.apples_east.refresh_from_db()
        self.assertEqual(self.apples_east.quantity_grams, 300)

    def test_validation_error_empty_items(self):
        with self.assertRaises(EmptyOrderItemsError) as context:
            create_order(self.caller, [])

        self.assertIn('at least one item', str(context.exception))

    def test_validation_error_invalid_quantity(self):
        for quantity in (0, -50, 75, '100', True):
            with self.subTest(quantity=quantity):
                with self.assertRaises(InvalidQuantityError):
                    create_order(self.caller, [{'product_id': self.apples.id, 'quantity': quantity}])

        self.apples_east.refresh_from_db()
        self.assertEqual(self.apples_east.quantity_grams, 1000)

    def test_malformed_product_reference(self):
        with self.assertRaises(ProductUnavailableError):
            create_order(self.caller, [{'product_id': 'abc', 'quantity': 100}])

    def test_unknown_product(self):
        with self.assertRaises(ProductUnavailableError):
            create_order(self.caller, [{'product_id': 99999, 'quantity': 100}])

    def test_requires_caller(self):
        with self.assertRaises(AuthRequiredError):
            create_order(None, [{'product_id': self.apples.id, 'quantity': 100}])

    def test_requires_region_on_profile(self):
        user = make_user('nomad', region='')
        caller = CallerIdentity.from_user(user)

        with self.assertRaises(NoRegionOnProfileError):
            create_order(caller, [{'product_id': self.apples.id, 'quantity': 100}])

    def test_card_number_and_cvc_rejected(self):
        payment = {'brand': 'visa', 'card_number': '4242424242424242', 'cvc': '123'}

        with self.assertRaises(PaymentFieldsRejectedError) as ctx:
            create_order(self.caller, [{'product_id': self.apples.id, 'quantity': 100}], payment=payment)

        self.assertEqual(ctx.exception.fields, ['card_number', 'cvc'])
        self.apples_east.refresh_from_db()
        self.assertEqual(self.apples_east.quantity_grams, 1000)

    def test_shipping_and_payment_snapshots(self):
        next_year = timezone.now().year + 1
        order = create_order(
            self.caller,
            [{'product_id': self.apples.id, 'quantity': 100}],
            shipping_address={'line1': '1 Main St', 'city': 'Springfield', 'postal_code': '12345'},
            payment={'brand': 'visa', 'last4': '4242', 'exp_month': 4, 'exp_year': next_year,
                     'name_on_card': 'Alice'},
        )

        self.assertEqual(order.shipping_address['city'], 'Springfield')
        self.assertEqual(order.shipping_address['line2'], '')
        self.assertEqual(order.payment_snapshot, {
            'brand': 'visa', 'last4': '4242', 'exp_month': 4,
            'exp_year': next_year, 'name_on_card': 'Alice',
        })

    def test_shipping_address_requires_fields(self):
        with self.assertRaises(InvalidShippingAddressError):
            create_order(
                self.caller,
                [{'product_id': self.apples.id, 'quantity': 100}],
                shipping_address={'line1': '1 Main St'},
            )

    def test_payment_expiry_validated(self):
        last_year = timezone.now().year - 1
        bad_payments = [
            {'exp_month': 13},
            {'exp_year': last_year},
            {'last4': '42a2'},
        ]
        for payment in bad_payments:
            with self.subTest(payment=payment):
                with self.assertRaises(InvalidPaymentDetailsError):
                    create_order(
                        self.caller,
                        [{'product_id': self.apples.id, 'quantity': 100}],
                        payment=payment,
                    )

    def test_customer_cannot_read_other_orders(self):
        order = create_order(self.caller, [{'product_id': self.apples.id, 'quantity': 100}])
        other = CallerIdentity.from_user(make_user('bob'))

        with self.assertRaises(OrderNotFoundError):
            get_order_for_caller(other, order.id)

        admin = CallerIdentity.from_user(make_user('root', is_staff=True))
        self.assertEqual(get_order_for_caller(admin, order.id).id, order.id)


class OrderNumberTestCase(TestCase):

    def test_format(self):
        self.assertRegex(generate_order_number(), ORDER_NUMBER_RE)

    def test_uses_given_date(self):
        when = datetime(2024, 3, 5, 12, 0, tzinfo=dt_timezone.utc)
        self.assertTrue(generate_order_number(when).startswith('ORD-20240305-'))

    def test_generated_once_and_stable(self):
        order = make_order(make_user('carol'))
        number = order.order_number
        self.assertRegex(number, ORDER_NUMBER_RE)

        order.save()
        order.refresh_from_db()
        self.assertEqual(order.order_number, number)
        self.assertEqual(Order.objects.get(pk=order.pk).order_number, number)


# =============================================================================
# Status transitions
# =============================================================================

class StatusTransitionTestCase(TestCase):

    def setUp(self):
        self.user = make_user('dave')

    def test_advance_walks_the_chain_in_order(self):
        order = make_order(self.user)
        seen = [order.status]

        for _ in range(4):
            result = advance_order(order.id)
            self.assertEqual(result.prev_status, seen[-1])
            seen.append(result.next_status)

        self.assertEqual(tuple(seen), lifecycle.STATUS_FLOW)
        order.refresh_from_db()
        self.assertEqual(set(order.status_timestamps), set(lifecycle.STATUS_FLOW))

    def test_advance_terminal_order(self):
        order = make_order(self.user, status=lifecycle.DELIVERED)
        before = order.updated_at

        with self.assertRaises(AlreadyTerminalError):
            advance_order(order.id)

        order.refresh_from_db()
        self.assertEqual(order.status, lifecycle.DELIVERED)
        self.assertEqual(order.updated_at, before)

    def test_advance_unknown_order(self):
        with self.assertRaises(OrderNotFoundError):
            advance_order(99999)

    def test_only_one_claim_wins(self):
        order = make_order(self.user)

        self.assertTrue(claim_transition(order.id, 'pending', 'confirmed'))
        self.assertFalse(claim_transition(order.id, 'pending', 'confirmed'))

        order.refresh_from_db()
        self.assertEqual(order.status, 'confirmed')

    def test_stale_read_reports_concurrent_modification(self):
        """
        Given: A worker read 'pending' but the order has since moved on
        When: That worker tries to advance
        Then: ConcurrentModification, the newer status is kept
        """
        order = make_order(self.user)
        advance_order(order.id)

        with patch('orders.transitions._current_status', return_value='pending'):
            with self.assertRaises(ConcurrentModificationError):
                advance_order(order.id)

        order.refresh_from_db()
        self.assertEqual(order.status, 'confirmed')

    def test_first_entry_timestamp_is_kept(self):
        first_entry = timezone.now() - timedelta(hours=1)
        order = make_order(self.user, status=lifecycle.CONFIRMED)
        Order.objects.filter(pk=order.pk).update(preparing_at=first_entry)

        self.assertTrue(claim_transition(order.id, 'confirmed', 'preparing'))

        order.refresh_from_db()
        self.assertEqual(order.status, 'preparing')
        self.assertEqual(order.preparing_at, first_entry)

    def test_stamp_status_is_idempotent(self):
        order = Order(user=self.user, region='east', total_amount=Decimal('0'))
        first = timezone.now() - timedelta(minutes=5)
        order.stamp_status('pending', first)
        order.stamp_status('pending', timezone.now())
        self.assertEqual(order.pending_at, first)

    def test_cancel_records_note(self):
        order = make_order(self.user, status=lifecycle.PREPARING)

        result = cancel_order(order.id, 'Customer called')

        self.assertEqual(result.order.status, lifecycle.CANCELLED)
        self.assertEqual(result.reason, 'Customer called')
        self.assertIsNotNone(result.cancelled_at)
        self.assertEqual(
            list(OrderNote.objects.filter(order=order).values_list('note', flat=True)),
            ['Customer called'],
        )

    def test_cancel_default_reason(self):
        order = make_order(self.user)
        self.assertEqual(cancel_order(order.id, '  ').reason, 'Cancelled by admin')

    def test_cancel_does_not_restock(self):
        product = Product.objects.create(name='Pears', price_per_100g=Decimal('1.20'))
        stock = Stock.objects.create(product=product, region='east', quantity_grams=500)
        order = create_order(
            CallerIdentity.from_user(self.user),
            [{'product_id': product.id, 'quantity': 200}],
        )

        cancel_order(order.id)

        stock.refresh_from_db()
        self.assertEqual(stock.quantity_grams, 300)

    def test_cancel_terminal_order(self):
        for terminal in (lifecycle.CANCELLED, lifecycle.DELIVERED):
            with self.subTest(status=terminal):
                order = make_order(self.user, status=terminal)
                with self.assertRaises(AlreadyTerminalError):
                    cancel_order(order.id)
                self.assertFalse(OrderNote.objects.filter(order=order).exists())

    def test_cancel_lost_to_delivery(self):
        order = make_order(self.user, status=lifecycle.OUT_FOR_DELIVERY)
        advance_order(order.id)

        with patch('orders.transitions._current_status', side_effect=['out_for_delivery', 'delivered']):
            with self.assertRaises(AlreadyTerminalError):
                cancel_order(order.id)

        order.refresh_from_db()
        self.assertEqual(order.status, lifecycle.DELIVERED)
        self.assertIsNone(order.cancelled_at)

    def test_update_status_accepts_only_next(self):
        order = make_order(self.user)

        with self.assertRaises(InvalidTransitionError):
            update_status(order.id, 'preparing')
        with self.assertRaises(InvalidTransitionError):
            update_status(order.id, 'cancelled')
        with self.assertRaises(InvalidStatusError):
            update_status(order.id, 'shipped')

        result = update_status(order.id, 'confirmed', note='Checked by phone')
        self.assertEqual(result.next_status, 'confirmed')
        self.assertEqual(result.order.admin_notes.get().note, 'Checked by phone')

    def test_update_status_terminal(self):
        order = make_order(self.user, status=lifecycle.DELIVERED)
        with self.assertRaises(AlreadyTerminalError):
            update_status(order.id, 'delivered')


class AdvanceManyTestCase(TestCase):

    def setUp(self):
        self.user = make_user('erin')

    def test_batch_isolation(self):
        valid = make_order(self.user)
        terminal = make_order(self.user, status=lifecycle.DELIVERED)

        result = advance_many([valid.id, 99999, terminal.id])

        self.assertEqual(result.ok, [valid.id])
        self.assertEqual(result.skipped, [
            {'id': 99999, 'reason': 'not_found'},
            {'id': terminal.id, 'reason': 'terminal'},
        ])

    def test_invalid_ids(self):
        result = advance_many(['abc', -1, 0, True, None, 1.5])

        self.assertEqual(result.ok, [])
        self.assertEqual([s['reason'] for s in result.skipped], ['invalid_id'] * 6)

    def test_digit_strings_accepted(self):
        order = make_order(self.user)
        result = advance_many([str(order.id)])
        self.assertEqual(result.ok, [order.id])

    def test_repeated_id_advanced_once(self):
        order = make_order(self.user)

        result = advance_many([order.id, str(order.id)])

        self.assertEqual(result.ok, [order.id])
        self.assertEqual(result.skipped, [{'id': order.id, 'reason': 'duplicate'}])
        order.refresh_from_db()
        self.assertEqual(order.status, 'confirmed')

    def test_lost_claim_is_race(self):
        order = make_order(self.user)

        with patch('orders.transitions.claim_transition', return_value=False):
            result = advance_many([order.id])

        self.assertEqual(result.skipped, [{'id': order.id, 'reason': 'race'}])

    def test_batch_limits(self):
        with self.assertRaises(OrderValidationError):
            advance_many([])
        with self.assertRaises(BatchTooLargeError):
            advance_many(list(range(1, 202)))


# =============================================================================
# Auto-progress scheduler
# =============================================================================

class ProgressorConfigTestCase(SimpleTestCase):

    def test_parse_duration(self):
        self.assertEqual(parse_duration('45s'), timedelta(seconds=45))
        self.assertEqual(parse_duration('2m'), timedelta(minutes=2))
        self.assertEqual(parse_duration(' 3H '), timedelta(hours=3))
        self.assertEqual(parse_duration('7d'), timedelta(days=7))

    def test_parse_duration_rejects_garbage(self):
        for value in ('', '2', 'm', '1.5m', '-1m', '2w', '2 m', 120):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_duration(value)

    def test_from_mapping_defaults(self):
        config = ProgressorConfig.from_mapping({})

        self.assertFalse(config.enabled)
        self.assertEqual(config.delay_for('pending'), timedelta(minutes=1))
        self.assertEqual(config.delay_for('out_for_delivery'), timedelta(minutes=3))
        self.assertEqual(config.interval, timedelta(seconds=30))
        self.assertEqual(config.max_per_run, 500)

    def test_from_mapping_overrides(self):
        config = ProgressorConfig.from_mapping({
            'ENABLED': True,
            'DELAYS': {'pending': '10s', 'confirmed': ''},
            'INTERVAL': '5s',
            'MAX_PER_RUN': 7,
        })

        self.assertTrue(config.enabled)
        self.assertEqual(config.delay_for('pending'), timedelta(seconds=10))
        self.assertIsNone(config.delay_for('confirmed'))
        self.assertEqual(config.max_per_run, 7)

    def test_rejects_terminal_delay(self):
        with self.assertRaises(ValueError):
            ProgressorConfig(delays={'delivered': timedelta(minutes=1)})


class OrderProgressorTestCase(TestCase):

    def setUp(self):
        self.user = make_user('frank')
        self.now = timezone.now()
        self.config = ProgressorConfig(
            enabled=True,
            delays={'pending': timedelta(minutes=1)},
        )
        self.progressor = OrderProgressor(self.config, clock=lambda: self.now)

    def test_advances_due_order_only(self):
        """
        Given: A entered pending 2 minutes ago, B 30 seconds ago, delay 1 minute
        When: One scheduler tick runs
        Then: A is confirmed, B is still pending
        """
        a = make_order(self.user, entered_at=self.now - timedelta(minutes=2))
        b = make_order(self.user, entered_at=self.now - timedelta(seconds=30))

        progressed = self.progressor.run_once()

        self.assertEqual(progressed, 1)
        a.refresh_from_db()
        b.refresh_from_db()
        self.assertEqual(a.status, 'confirmed')
        self.assertEqual(a.confirmed_at, self.now)
        self.assertEqual(b.status, 'pending')

    def test_oldest_due_first(self):
        newer = make_order(self.user, entered_at=self.now - timedelta(minutes=2))
        older = make_order(self.user, entered_at=self.now - timedelta(minutes=5))

        self.assertEqual(self.progressor.run_once(max_per_run=1), 1)

        older.refresh_from_db()
        newer.refresh_from_db()
        self.assertEqual(older.status, 'confirmed')
        self.assertEqual(newer.status, 'pending')

    def test_tie_broken_by_creation_time(self):
        entered = self.now - timedelta(minutes=5)
        first = make_order(self.user, entered_at=entered)
        second = make_order(self.user, entered_at=entered)
        Order.objects.filter(pk=second.pk).update(created_at=self.now - timedelta(hours=1))

        self.progressor.run_once(max_per_run=1)

        second.refresh_from_db()
        first.refresh_from_db()
        self.assertEqual(second.status, 'confirmed')
        self.assertEqual(first.status, 'pending')

    def test_respects_per_run_cap(self):
        for _ in range(3):
            make_order(self.user, entered_at=self.now - timedelta(minutes=2))

        self.assertEqual(self.progressor.run_once(max_per_run=2), 2)
        self.assertEqual(Order.objects.filter(status='pending').count(), 1)

    def test_zero_delay_runs_whole_chain(self):
        config = ProgressorConfig(
            enabled=True,
            delays={status: timedelta(0) for status in lifecycle.NON_TERMINAL_STATUSES},
        )
        order = make_order(self.user, entered_at=self.now)

        progressed = OrderProgressor(config, clock=lambda: self.now).run_once()

        self.assertEqual(progressed, 4)
        order.refresh_from_db()
        self.assertEqual(order.status, 'delivered')

    def test_terminal_orders_ignored(self):
        make_order(self.user, status=lifecycle.CANCELLED, entered_at=self.now - timedelta(hours=1))
        self.assertEqual(self.progressor.run_once(), 0)

    def test_lost_claim_is_not_counted(self):
        make_order(self.user, entered_at=self.now - timedelta(minutes=2))

        with patch('orders.progressor.claim_transition', return_value=False) as claim:
            self.assertIsNone(self.progressor.advance_one_due('pending'))
        self.assertEqual(claim.call_count, 1)

    def test_sweep_continues_after_lost_claim(self):
        """
        Given: A (5 min) and B (3 min) both due in pending
        When: Another worker advances A between selection and claim
        Then: The sweep moves on to B and counts only B
        """
        a = make_order(self.user, entered_at=self.now - timedelta(minutes=5))
        b = make_order(self.user, entered_at=self.now - timedelta(minutes=3))
        competitor_ran = []

        def claim_after_competitor(order_id, from_status, to_status, now=None):
            if not competitor_ran:
                competitor_ran.append(order_id)
                claim_transition(a.id, 'pending', 'confirmed', now=now)
            return claim_transition(order_id, from_status, to_status, now=now)

        with patch('orders.progressor.claim_transition', side_effect=claim_after_competitor):
            progressed = self.progressor.run_once()

        self.assertEqual(competitor_ran, [a.id])
        self.assertEqual(progressed, 1)
        a.refresh_from_db()
        b.refresh_from_db()
        self.assertEqual(a.status, 'confirmed')
        self.assertEqual(b.status, 'confirmed')


# =============================================================================
# Tasks and commands
# =============================================================================

AUTOPROGRESS_ON = {
    'ENABLED': True,
    'DELAYS': {'pending': '1m'},
    'INTERVAL': '30s',
    'MAX_PER_RUN': 10,
}


class OrderTaskTestCase(TestCase):

    def setUp(self):
        self.user = make_user('gina')

    def test_confirmation_success(self):
        order = make_order(self.user)
        result = send_order_confirmation(order.id)
        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['order_id'], order.id)

    def test_confirmation_skips_cancelled(self):
        order = make_order(self.user, status=lifecycle.CANCELLED)
        self.assertEqual(send_order_confirmation(order.id)['status'], 'skipped')

    def test_confirmation_missing_order(self):
        self.assertEqual(send_order_confirmation(99999)['status'], 'error')

    @override_settings(ORDER_AUTOPROGRESS={'ENABLED': False})
    def test_progress_task_disabled(self):
        self.assertEqual(progress_due_orders(), {'status': 'disabled', 'progressed': 0})

    @override_settings(ORDER_AUTOPROGRESS=AUTOPROGRESS_ON)
    def test_progress_task_advances(self):
        order = make_order(self.user, entered_at=timezone.now() - timedelta(minutes=5))

        self.assertEqual(progress_due_orders(), {'status': 'success', 'progressed': 1})
        order.refresh_from_db()
        self.assertEqual(order.status, 'confirmed')

    @override_settings(ORDER_AUTOPROGRESS=AUTOPROGRESS_ON)
    def test_progress_task_swallows_errors(self):
        with patch.object(OrderProgressor, 'run_once', side_effect=RuntimeError('db down')):
            self.assertEqual(progress_due_orders(), {'status': 'error', 'progressed': 0})

    @override_settings(ORDER_AUTOPROGRESS={'ENABLED': False})
    def test_command_disabled(self):
        out = StringIO()
        call_command('progress_orders', stdout=out)
        self.assertIn('disabled', out.getvalue())

    @override_settings(ORDER_AUTOPROGRESS={'ENABLED': False, 'DELAYS': {'pending': '1m'}})
    def test_command_force(self):
        make_order(self.user, entered_at=timezone.now() - timedelta(minutes=5))
        out = StringIO()

        call_command('progress_orders', '--force', stdout=out)

        self.assertIn('Progressed 1 orders', out.getvalue())


# =============================================================================
# Concurrency
# =============================================================================

class ConcurrentOrderTestCase(TransactionTestCase):
    """
    Real threads against a shared database. SQLite may refuse a writer with
    a locking error; such attempts count as failures, never as successes.
    """

    def setUp(self):
        self.user = make_user('hank')
        self.caller = CallerIdentity.from_user(self.user)
        self.product = Product.objects.create(name='Saffron', price_per_100g=Decimal('50.00'))
        self.stock = Stock.objects.create(product=self.product, region='east', quantity_grams=500)

    def _run_threads(self, target, count):
        threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    @patch('orders.services._queue_confirmation')
    def test_concurrent_orders_no_overselling(self, _queue):
        """
        Given: 500 g in stock
        When: Four concurrent orders of 200 g each
        Then: Exactly two succeed and 100 g remain

        The exact count is only pinned when an order was refused for stock
        or no attempt was refused by SQLite's locking.
        """
        results = {}

        def place_order(key):
            try:
                create_order(self.caller, [{'product_id': self.product.id, 'quantity': 200}])
                results[key] = 'ok'
            except InsufficientStockError:
                results[key] = 'insufficient'
            except OperationalError:
                results[key] = 'locked'
            finally:
                connection.close()

        self._run_threads(place_order, 4)

        outcomes = list(results.values())
        succeeded = outcomes.count('ok')
        self.stock.refresh_from_db()
        self.assertEqual(len(outcomes), 4)
        self.assertLessEqual(succeeded, 2)
        self.assertEqual(self.stock.quantity_grams, 500 - 200 * succeeded)
        self.assertEqual(Order.objects.count(), succeeded)
        if connection.vendor != 'sqlite':
            self.assertNotIn('locked', outcomes)
        if 'insufficient' in outcomes or 'locked' not in outcomes:
            self.assertEqual(succeeded, 2)
            self.assertEqual(self.stock.quantity_grams, 100)

    def test_concurrent_advances_never_skip_steps(self):
        order = make_order(self.user)
        results = {}

        def advance(key):
            try:
                advance_order(order.id)
                results[key] = 'ok'
            except Exception as e:
                results[key] = type(e).__name__
            finally:
                connection.close()

        self._run_threads(advance, 2)

        succeeded = sum(1 for r in results.values() if r == 'ok')
        order.refresh_from_db()
        # Each success moved the order exactly one step
        self.assertEqual(order.status, lifecycle.STATUS_FLOW[succeeded])


# =============================================================================
# API
# =============================================================================

@override_settings(RATE_LIMIT_ENABLED=False)
class OrderAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = make_user('ivy', region='east')
        self.client.force_authenticate(self.user)

        self.product = Product.objects.create(name='Apples', price_per_100g=Decimal('2.00'))
        self.stock = Stock.objects.create(product=self.product, region='east', quantity_grams=1000)
        Stock.objects.create(product=self.product, region='west', quantity_grams=1000)

    def test_create_order(self):
        response = self.client.post('/api/orders/', {
            'items': [{'product_id': self.product.id, 'quantity': 350}],
            'region': 'west',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['region'], 'east')
        self.assertEqual(response.data['total_amount'], '7.00')
        self.assertRegex(response.data['order_number'], ORDER_NUMBER_RE)
        self.assertIn('pending', response.data['status_timestamps'])
        self.assertEqual(response.data['items'][0]['product']['name'], 'Apples')

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity_grams, 650)

    def test_create_requires_auth(self):
        response = APIClient().post('/api/orders/', {'items': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_insufficient_stock_is_retryable_conflict(self):
        response = self.client.post('/api/orders/', {
            'items': [{'product_id': self.product.id, 'quantity': 5000}],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')
        self.assertTrue(response.data['retryable'])

    def test_validation_errors(self):
        cases = [
            ({'items': []}, 'empty_order_items'),
            ({'items': [{'product_id': self.product.id, 'quantity': 30}]}, 'invalid_quantity'),
            ({'items': [{'product_id': self.product.id, 'quantity': 100}],
              'payment': {'card_number': '4242424242424242'}}, 'payment_fields_rejected'),
        ]
        for body, code in cases:
            with self.subTest(code=code):
                response = self.client.post('/api/orders/', body, format='json')
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertEqual(response.data['error'], code)
                self.assertFalse(response.data['retryable'])

    def test_list_own_orders(self):
        make_order(self.user)
        make_order(make_user('other'))

        response = self.client.get('/api/orders/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 1)
        self.assertEqual(response.data['page'], 1)
        self.assertEqual(len(response.data['items']), 1)

    def test_list_filters_by_status(self):
        make_order(self.user)
        make_order(self.user, status=lifecycle.DELIVERED)

        response = self.client.get('/api/orders/', {'status': 'delivered'})

        self.assertEqual(response.data['total'], 1)
        self.assertEqual(response.data['items'][0]['status'], 'delivered')

    def test_other_customers_order_is_not_found(self):
        order = make_order(make_user('other'))

        response = self.client.get(f'/api/orders/{order.id}/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'order_not_found')

    @override_settings(RATE_LIMIT_ENABLED=True)
    def test_create_is_rate_limited(self):
        client = MagicMock()
        client.incr.return_value = 1000
        client.ttl.return_value = 42

        with patch('core.rate_limiting.get_redis_client', return_value=client):
            response = self.client.post('/api/orders/', {
                'items': [{'product_id': self.product.id, 'quantity': 100}],
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data['error'], 'rate_limited')
        self.assertEqual(response['Retry-After'], '42')
        self.assertFalse(Order.objects.exists())


class AdminOrderAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.admin = make_user('admin', is_staff=True)
        self.customer = make_user('jill')
        self.client.force_authenticate(self.admin)

    def test_customer_forbidden(self):
        client = APIClient()
        client.force_authenticate(self.customer)
        response = client.get('/api/admin/orders/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_filters(self):
        make_order(self.customer)
        make_order(self.customer, region='west')

        response = self.client.get('/api/admin/orders/', {'region': 'west'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 1)

    def test_detail(self):
        order = make_order(self.customer)
        response = self.client.get(f'/api/admin/orders/{order.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['next_status'], 'confirmed')

    def test_advance(self):
        order = make_order(self.customer)

        response = self.client.post(f'/api/admin/orders/{order.id}/advance/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['prev_status'], 'pending')
        self.assertEqual(response.data['next_status'], 'confirmed')
        self.assertEqual(response.data['order']['status'], 'confirmed')

    def test_advance_terminal(self):
        order = make_order(self.customer, status=lifecycle.DELIVERED)

        response = self.client.post(f'/api/admin/orders/{order.id}/advance/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'already_terminal')

    def test_advance_many(self):
        valid = make_order(self.customer)
        terminal = make_order(self.customer, status=lifecycle.CANCELLED)

        response = self.client.post('/api/admin/orders/advance-many/', {
            'ids': [valid.id, 99999, terminal.id, 'abc'],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['ok'], [valid.id])
        self.assertEqual(response.data['skipped'], [
            {'id': 99999, 'reason': 'not_found'},
            {'id': terminal.id, 'reason': 'terminal'},
            {'id': 'abc', 'reason': 'invalid_id'},
        ])

    def test_advance_many_too_large(self):
        response = self.client.post('/api/admin/orders/advance-many/', {
            'ids': list(range(1, 202)),
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'batch_too_large')

    def test_cancel(self):
        order = make_order(self.customer, status=lifecycle.CONFIRMED)

        response = self.client.post(f'/api/admin/orders/{order.id}/cancel/', {
            'reason': 'Out of delivery range',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reason'], 'Out of delivery range')
        self.assertEqual(response.data['order']['status'], 'cancelled')
        self.assertEqual(response.data['order']['admin_notes'][0]['note'], 'Out of delivery range')
        self.assertIsNotNone(response.data['cancelled_at'])

        again = self.client.post(f'/api/admin/orders/{order.id}/cancel/')
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

    def test_status_update(self):
        order = make_order(self.customer)

        skip = self.client.patch(f'/api/admin/orders/{order.id}/status/', {
            'status': 'delivered',
        }, format='json')
        self.assertEqual(skip.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(skip.data['error'], 'invalid_transition')

        bogus = self.client.patch(f'/api/admin/orders/{order.id}/status/', {
            'status': 'shipped',
        }, format='json')
        self.assertEqual(bogus.data['error'], 'invalid_status')

        ok = self.client.patch(f'/api/admin/orders/{order.id}/status/', {
            'status': 'confirmed',
        }, format='json')
        self.assertEqual(ok.status_code, status.HTTP_200_OK)
        self.assertEqual(ok.data['order']['status'], 'confirmed')

    def test_stats(self):
        make_order(self.customer)
        make_order(self.customer, status=lifecycle.DELIVERED)
        Product.objects.create(name='Figs', price_per_100g=Decimal('4.00'))

        response = self.client.get('/api/admin/orders/stats/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['orders'], 2)
        self.assertEqual(response.data['pending_orders'], 1)
        self.assertEqual(response.data['delivered_orders'], 1)
        self.assertEqual(Decimal(response.data['delivered_revenue']), Decimal('1.00'))
        self.assertEqual(response.data['products'], 1)
        self.assertEqual(response.data['users'], 2)

"""
Tests for the regional stock ledger and the catalog / stock endpoints.
"""
import threading
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import OperationalError, connection
from django.test import TestCase, TransactionTestCase
from rest_framework import status
from rest_framework.test import APIClient

from accounts.models import Profile
from core.exceptions import (
    DuplicateStockError,
    InsufficientStockError,
    ProductNotFoundError,
    StockNotFoundError,
    StockValidationError,
)
from inventory import services
from inventory.models import Product, Stock

User = get_user_model()


class StockLedgerTestCase(TestCase):

    def setUp(self):
        self.product = Product.objects.create(name='Walnuts', price_per_100g=Decimal('2.40'))
        self.stock = Stock.objects.create(product=self.product, region='east', quantity_grams=500)

    def test_reserve_decrements(self):
        services.reserve(self.product.id, 'east', 200)

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity_grams, 300)

    def test_reserve_normalizes_region(self):
        services.reserve(self.product.id, '  East ', 100)
        self.assertEqual(services.available_grams(self.product.id, 'EAST'), 400)

    def test_reserve_insufficient(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            services.reserve(self.product.id, 'east', 550)

        self.assertEqual(ctx.exception.requested, 550)
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity_grams, 500)

    def test_reserve_missing_row_is_insufficient(self):
        with self.assertRaises(InsufficientStockError):
            services.reserve(self.product.id, 'west', 50)

    def test_sequential_reservations_stop_at_zero(self):
        """
        Given: 500 g in stock
        When: Eight reservations of 100 g
        Then: Exactly five succeed and stock ends at 0
        """
        succeeded = 0
        for _ in range(8):
            try:
                services.reserve(self.product.id, 'east', 100)
                succeeded += 1
            except InsufficientStockError:
                pass

        self.assertEqual(succeeded, 5)
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity_grams, 0)
        self.assertTrue(self.stock.is_out_of_stock)

    def test_adjust_sets_quantity(self):
        stock = services.adjust(self.stock.id, 1250)
        self.assertEqual(stock.quantity_grams, 1250)
        self.assertEqual(stock.product.name, 'Walnuts')

    def test_adjust_validation(self):
        for value in (-1, '100', 1.5, True):
            with self.subTest(value=value):
                with self.assertRaises(StockValidationError):
                    services.adjust(self.stock.id, value)

        with self.assertRaises(StockNotFoundError):
            services.adjust(99999, 10)

    def test_create_stock(self):
        stock = services.create_stock(self.product.id, ' West', 300)

        self.assertEqual(stock.region, 'west')
        self.assertEqual(stock.quantity_grams, 300)

    def test_create_stock_duplicate(self):
        with self.assertRaises(DuplicateStockError):
            services.create_stock(self.product.id, 'EAST', 100)

        self.assertEqual(Stock.objects.filter(product=self.product).count(), 1)

    def test_create_stock_validation(self):
        with self.assertRaises(StockValidationError):
            services.create_stock(self.product.id, '', 100)
        with self.assertRaises(StockValidationError):
            services.create_stock(self.product.id, 'north', -5)
        with self.assertRaises(ProductNotFoundError):
            services.create_stock(99999, 'north', 100)

    def test_delete_stock(self):
        services.delete_stock(self.stock.id)
        self.assertFalse(Stock.objects.exists())

        with self.assertRaises(StockNotFoundError):
            services.delete_stock(self.stock.id)


class ConcurrentReserveTestCase(TransactionTestCase):
    """
    Threads racing on one (product, region) row. Attempts refused by
    database locking count as failures.
    """

    def setUp(self):
        self.product = Product.objects.create(name='Pine Nuts', price_per_100g=Decimal('9.00'))
        self.stock = Stock.objects.create(product=self.product, region='east', quantity_grams=500)

    def test_stock_never_goes_negative(self):
        """
        Given: 500 g in stock
        When: Ten concurrent reservations of 100 g
        Then: Exactly five succeed and stock ends at 0

        SQLite may refuse a writer outright with a locking error. Such an
        attempt never touched the row, so the exact count is only pinned when
        the stock ran out or no attempt was refused.
        """
        results = []
        lock = threading.Lock()

        def reserve():
            try:
                services.reserve(self.product.id, 'east', 100)
                outcome = 'ok'
            except InsufficientStockError:
                outcome = 'insufficient'
            except OperationalError:
                outcome = 'locked'
            finally:
                connection.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=reserve) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        succeeded = results.count('ok')
        self.stock.refresh_from_db()
        self.assertEqual(len(results), 10)
        self.assertEqual(self.stock.quantity_grams, 500 - 100 * succeeded)
        self.assertLessEqual(succeeded, 5)
        if connection.vendor != 'sqlite':
            self.assertNotIn('locked', results)
        if 'insufficient' in results or 'locked' not in results:
            self.assertEqual(succeeded, 5)
            self.assertEqual(self.stock.quantity_grams, 0)


class CatalogAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.apples = Product.objects.create(
            name='Apples', category='fruits', price_per_100g=Decimal('0.80')
        )
        self.brie = Product.objects.create(
            name='Brie', category='cheese', description='Soft French cheese',
            price_per_100g=Decimal('3.20')
        )
        self.hidden = Product.objects.create(
            name='Hidden', price_per_100g=Decimal('1.00'), is_active=False
        )
        Stock.objects.create(product=self.apples, region='east', quantity_grams=1000)
        Stock.objects.create(product=self.apples, region='west', quantity_grams=0)
        Stock.objects.create(product=self.brie, region='west', quantity_grams=250)

    def test_list_is_public_and_active_only(self):
        response = self.client.get('/api/products/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 2)
        self.assertEqual([p['name'] for p in response.data['items']], ['Apples', 'Brie'])
        self.assertIsNone(response.data['items'][0]['available_grams'])

    def test_list_filters(self):
        cases = [
            ({'q': 'french'}, ['Brie']),
            ({'category': 'Fruits'}, ['Apples']),
            ({'min_price': '1.00'}, ['Brie']),
            ({'max_price': '1.00'}, ['Apples']),
            ({'max_price': 'cheap'}, ['Apples', 'Brie']),
        ]
        for params, expected in cases:
            with self.subTest(params=params):
                response = self.client.get('/api/products/', params)
                self.assertEqual([p['name'] for p in response.data['items']], expected)

    def test_list_with_region(self):
        response = self.client.get('/api/products/', {'region': 'West'})

        grams = {p['name']: p['available_grams'] for p in response.data['items']}
        self.assertEqual(grams, {'Apples': 0, 'Brie': 250})

        in_stock = self.client.get('/api/products/', {'region': 'west', 'in_stock': 'true'})
        self.assertEqual([p['name'] for p in in_stock.data['items']], ['Brie'])

    def test_list_in_stock_any_region(self):
        Stock.objects.filter(product=self.brie).update(quantity_grams=0)

        response = self.client.get('/api/products/', {'in_stock': '1'})

        self.assertEqual([p['name'] for p in response.data['items']], ['Apples'])

    def test_pagination(self):
        response = self.client.get('/api/products/', {'limit': 1, 'page': 2})

        self.assertEqual(response.data['total'], 2)
        self.assertEqual(response.data['pages'], 2)
        self.assertEqual(response.data['page'], 2)
        self.assertEqual([p['name'] for p in response.data['items']], ['Brie'])

    def test_detail_with_stock_by_region(self):
        response = self.client.get(f'/api/products/{self.apples.id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stock_by_region'], {'east': 1000, 'west': 0})

    def test_detail_inactive_is_not_found(self):
        response = self.client.get(f'/api/products/{self.hidden.id}/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'product_not_found')

    def test_regions(self):
        response = self.client.get('/api/regions/')
        self.assertEqual(response.data, {'regions': ['east', 'west']})

    def test_availability(self):
        response = self.client.get('/api/availability/', {
            'product_id': self.apples.id, 'region': 'EAST',
        })
        self.assertEqual(response.data, {
            'product_id': self.apples.id, 'region': 'east', 'available_grams': 1000,
        })

        none_here = self.client.get('/api/availability/', {
            'product_id': self.brie.id, 'region': 'east',
        })
        self.assertEqual(none_here.data['available_grams'], 0)

    def test_availability_validation(self):
        missing_region = self.client.get('/api/availability/', {'product_id': self.apples.id})
        self.assertEqual(missing_region.status_code, status.HTTP_400_BAD_REQUEST)

        bad_id = self.client.get('/api/availability/', {'product_id': 'x', 'region': 'east'})
        self.assertEqual(bad_id.status_code, status.HTTP_400_BAD_REQUEST)

        unknown = self.client.get('/api/availability/', {'product_id': 99999, 'region': 'east'})
        self.assertEqual(unknown.status_code, status.HTTP_404_NOT_FOUND)


class AdminStockAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.admin = User.objects.create_user(username='admin', password='x', is_staff=True)
        self.client.force_authenticate(self.admin)

        self.product = Product.objects.create(name='Feta', price_per_100g=Decimal('1.90'))
        self.stock = Stock.objects.create(product=self.product, region='east', quantity_grams=400)

    def test_customer_forbidden(self):
        customer = User.objects.create_user(username='kim', password='x')
        client = APIClient()
        client.force_authenticate(customer)

        response = client.get('/api/admin/stocks/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_and_filter(self):
        Stock.objects.create(product=self.product, region='west', quantity_grams=100)

        response = self.client.get('/api/admin/stocks/', {'region': 'west'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 1)
        self.assertEqual(response.data['items'][0]['product']['name'], 'Feta')

    def test_create(self):
        response = self.client.post('/api/admin/stocks/', {
            'product_id': self.product.id, 'region': 'North', 'quantity': 750,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['region'], 'north')
        self.assertEqual(response.data['quantity_grams'], 750)

    def test_create_duplicate_is_conflict(self):
        response = self.client.post('/api/admin/stocks/', {
            'product_id': self.product.id, 'region': 'east', 'quantity': 10,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'duplicate_stock')
        self.assertFalse(response.data['retryable'])

    def test_create_unknown_product(self):
        response = self.client.post('/api/admin/stocks/', {
            'product_id': 99999, 'region': 'east', 'quantity': 10,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_update_quantity(self):
        response = self.client.patch(f'/api/admin/stocks/{self.stock.id}/', {
            'quantity': 0,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['quantity_grams'], 0)
        self.assertTrue(response.data['is_out_of_stock'])

    def test_update_negative_quantity(self):
        response = self.client.patch(f'/api/admin/stocks/{self.stock.id}/', {
            'quantity': -50,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_stock')
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity_grams, 400)

    def test_update_unknown(self):
        response = self.client.patch('/api/admin/stocks/99999/', {'quantity': 5}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'stock_not_found')

    def test_delete(self):
        response = self.client.delete(f'/api/admin/stocks/{self.stock.id}/')

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Stock.objects.exists())


class SeedDataCommandTestCase(TestCase):

    def test_seed(self):
        call_command(
            'seed_data', '--products', '6', '--regions', 'East', 'west', '--customers', '1',
            stdout=StringIO(),
        )

        self.assertEqual(Product.objects.count(), 6)
        self.assertTrue(set(Stock.objects.values_list('region', flat=True)) <= {'east', 'west'})
        self.assertTrue(all(q % 50 == 0 for q in Stock.objects.values_list('quantity_grams', flat=True)))
        self.assertEqual(
            sorted(Profile.objects.values_list('user__username', 'region')),
            [('east_customer1', 'east'), ('west_customer1', 'west')],
        )

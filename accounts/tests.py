"""
Tests for profiles, caller identity, saved customer details and admin user
management.
"""
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from accounts import services
from accounts.identity import CallerIdentity
from accounts.models import CustomerDetails, Profile, normalize_region
from core.exceptions import (
    InvalidRegionError,
    InvalidShippingAddressError,
    PaymentFieldsRejectedError,
    SelfDeleteError,
    UserHasOrdersError,
    UserNotFoundError,
)
from orders.models import Order

User = get_user_model()


class ProfileTestCase(TestCase):

    def test_region_is_normalized_on_save(self):
        user = User.objects.create_user(username='lena', password='x')
        profile = Profile.objects.create(user=user, region='  East ')

        profile.refresh_from_db()
        self.assertEqual(profile.region, 'east')

    def test_normalize_region(self):
        self.assertEqual(normalize_region(None), '')
        self.assertEqual(normalize_region(' WEST'), 'west')


class CallerIdentityTestCase(TestCase):

    def test_customer_with_region(self):
        user = User.objects.create_user(username='mia', password='x')
        Profile.objects.create(user=user, region='west')

        caller = CallerIdentity.from_user(user)

        self.assertEqual(caller, CallerIdentity(user_id=user.pk, role='customer', region='west'))
        self.assertFalse(caller.is_admin)

    def test_staff_is_admin(self):
        user = User.objects.create_user(username='ops', password='x', is_staff=True)

        caller = CallerIdentity.from_user(user)

        self.assertTrue(caller.is_admin)
        self.assertEqual(caller.region, '')

    def test_anonymous_has_no_identity(self):
        self.assertIsNone(CallerIdentity.from_user(AnonymousUser()))
        self.assertIsNone(CallerIdentity.from_user(None))


class CustomerDetailsServiceTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username='nora', password='x')

    def test_empty_details(self):
        details = services.get_customer_details(self.user)
        self.assertEqual(details, {'region': '', 'address': None, 'updated_at': None})

    def test_save_region_creates_profile(self):
        """
        Given: A user without a profile
        When: Saving a region
        Then: The profile is created and orders can now take their region from it
        """
        details = services.save_customer_details(self.user, {'region': ' West '})

        self.assertEqual(details['region'], 'west')
        self.assertEqual(CallerIdentity.from_user(self.user).region, 'west')

    def test_save_address_fills_missing_fields(self):
        details = services.save_customer_details(self.user, {
            'address': {'line1': ' 1 Main St ', 'city': 'Springfield', 'extra': 'dropped'},
        })

        self.assertEqual(details['address'], {
            'line1': '1 Main St',
            'line2': '',
            'city': 'Springfield',
            'postal_code': '',
            'notes': '',
        })
        self.assertIsNotNone(details['updated_at'])

    def test_save_replaces_whole_address(self):
        services.save_customer_details(self.user, {'address': {'line1': 'Old', 'city': 'A'}})
        services.save_customer_details(self.user, {'address': {'city': 'B'}})

        saved = CustomerDetails.objects.get(user=self.user)
        self.assertEqual(saved.line1, '')
        self.assertEqual(saved.city, 'B')
        self.assertEqual(CustomerDetails.objects.count(), 1)

    def test_payment_fields_rejected_before_any_write(self):
        for field in ('card_number', 'cvc', 'payment'):
            with self.subTest(field=field):
                with self.assertRaises(PaymentFieldsRejectedError):
                    services.save_customer_details(self.user, {
                        'region': 'east',
                        'address': {'line1': '1 Main St'},
                        field: '4242424242424242' if field != 'payment' else {'cvc': '123'},
                    })

        self.assertFalse(Profile.objects.filter(user=self.user).exists())
        self.assertFalse(CustomerDetails.objects.filter(user=self.user).exists())

    def test_invalid_region(self):
        for value in ('', '   ', 'east coast', 'x' * 40, 7):
            with self.subTest(value=value):
                with self.assertRaises(InvalidRegionError):
                    services.save_customer_details(self.user, {'region': value})

    def test_invalid_address(self):
        for address in ('1 Main St', {'city': 12}, {'postal_code': '9' * 21}):
            with self.subTest(address=address):
                with self.assertRaises(InvalidShippingAddressError):
                    services.save_customer_details(self.user, {'address': address})

    def test_requires_region_or_address(self):
        with self.assertRaises(InvalidShippingAddressError):
            services.save_customer_details(self.user, {})


class UserDeletionServiceTestCase(TestCase):

    def setUp(self):
        self.admin = User.objects.create_user(username='root', password='x', is_staff=True)
        self.customer = User.objects.create_user(username='olga', password='x')

    def test_delete_user(self):
        Profile.objects.create(user=self.customer, region='east')

        services.delete_user(self.admin.pk, self.customer.pk)

        self.assertFalse(User.objects.filter(pk=self.customer.pk).exists())
        self.assertFalse(Profile.objects.filter(user_id=self.customer.pk).exists())

    def test_cannot_delete_self(self):
        with self.assertRaises(SelfDeleteError):
            services.delete_user(self.admin.pk, self.admin.pk)

    def test_unknown_user(self):
        with self.assertRaises(UserNotFoundError):
            services.delete_user(self.admin.pk, 99999)

    def test_user_with_orders_is_kept(self):
        Order.objects.create(user=self.customer, region='east', total_amount=Decimal('1.00'))

        with self.assertRaises(UserHasOrdersError):
            services.delete_user(self.admin.pk, self.customer.pk)

        self.assertTrue(User.objects.filter(pk=self.customer.pk).exists())


class MyDetailsAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username='pia', password='x')
        self.client.force_authenticate(self.user)

    def test_requires_auth(self):
        response = APIClient().get('/api/me/details/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_get_before_saving(self):
        response = self.client.get('/api/me/details/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['region'], '')
        self.assertIsNone(response.data['address'])

    def test_put_then_get(self):
        response = self.client.put('/api/me/details/', {
            'region': 'east',
            'address': {'line1': '1 Main St', 'city': 'Springfield', 'postal_code': '12345'},
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['region'], 'east')

        response = self.client.get('/api/me/details/')
        self.assertEqual(response.data['address']['postal_code'], '12345')

    def test_put_with_card_number(self):
        response = self.client.put('/api/me/details/', {
            'address': {'line1': '1 Main St'},
            'card_number': '4242424242424242',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'payment_fields_rejected')
        self.assertFalse(CustomerDetails.objects.exists())

    def test_put_invalid_region(self):
        response = self.client.put('/api/me/details/', {'region': 'east coast'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_region')


class AdminUserAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.admin = User.objects.create_user(username='boss', password='x', is_staff=True)
        self.alice = User.objects.create_user(username='alice', password='x', email='alice@example.com')
        self.bob = User.objects.create_user(username='bob', password='x')
        Profile.objects.create(user=self.alice, region='east')
        self.client.force_authenticate(self.admin)

    def test_customer_forbidden(self):
        client = APIClient()
        client.force_authenticate(self.alice)

        self.assertEqual(client.get('/api/admin/users/').status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(
            client.delete(f'/api/admin/users/{self.bob.pk}/').status_code,
            status.HTTP_403_FORBIDDEN,
        )

    def test_list_users(self):
        response = self.client.get('/api/admin/users/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 3)
        self.assertEqual(response.data['page'], 1)
        self.assertNotIn('password', response.data['items'][0])

    def test_list_filters(self):
        response = self.client.get('/api/admin/users/', {'q': 'ALICE'})
        self.assertEqual([u['username'] for u in response.data['items']], ['alice'])
        self.assertEqual(response.data['items'][0]['region'], 'east')
        self.assertEqual(response.data['items'][0]['role'], 'customer')

        response = self.client.get('/api/admin/users/', {'role': 'admin'})
        self.assertEqual([u['username'] for u in response.data['items']], ['boss'])

        response = self.client.get('/api/admin/users/', {'role': 'customer'})
        self.assertEqual(response.data['total'], 2)

    def test_list_paginates(self):
        response = self.client.get('/api/admin/users/', {'limit': 2, 'page': 2})

        self.assertEqual(response.data['pages'], 2)
        self.assertEqual(len(response.data['items']), 1)

    def test_delete_user(self):
        response = self.client.delete(f'/api/admin/users/{self.bob.pk}/')

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(User.objects.filter(pk=self.bob.pk).exists())

    def test_delete_errors(self):
        response = self.client.delete(f'/api/admin/users/{self.admin.pk}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'cannot_delete_self')

        response = self.client.delete('/api/admin/users/99999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        Order.objects.create(user=self.alice, region='east', total_amount=Decimal('1.00'))
        response = self.client.delete(f'/api/admin/users/{self.alice.pk}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'user_has_orders')

"""
Account Models - customer profile holding the delivery region, and the
saved delivery address.

The region on the profile is authoritative for orders: it is never taken
from an order request body, only from the saved details.
"""
from django.conf import settings
from django.db import models


def normalize_region(value) -> str:
    return str(value or '').strip().lower()


class Profile(models.Model):
    """
    Per-user profile. One row per auth user.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='profile',
        help_text="Owning user account"
    )
    region = models.CharField(
        max_length=32,
        blank=True,
        default='',
        db_index=True,
        help_text="Delivery region, e.g. 'east' or 'west'"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Profile'
        verbose_name_plural = 'Profiles'
        ordering = ['user_id']

    def __str__(self):
        return f"{self.user} ({self.region or 'no region'})"

    def save(self, *args, **kwargs):
        self.region = normalize_region(self.region)
        super().save(*args, **kwargs)


class CustomerDetails(models.Model):
    """
    Saved delivery address. Payment details are never stored here.
    """
    ADDRESS_FIELDS = ('line1', 'line2', 'city', 'postal_code', 'notes')

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='customer_details'
    )
    line1 = models.CharField(max_length=200, blank=True, default='')
    line2 = models.CharField(max_length=200, blank=True, default='')
    city = models.CharField(max_length=100, blank=True, default='')
    postal_code = models.CharField(max_length=20, blank=True, default='')
    notes = models.CharField(max_length=500, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Customer details'
        verbose_name_plural = 'Customer details'
        ordering = ['user_id']

    def __str__(self):
        return f"{self.user} - {self.city or 'no address'}"

    @property
    def address(self):
        return {name: getattr(self, name) for name in self.ADDRESS_FIELDS}

"""
Order Models - Order, OrderItem and OrderNote entities with status tracking.

Order Status Flow:
    PENDING -> CONFIRMED -> PREPARING -> OUT_FOR_DELIVERY -> DELIVERED
    any non-terminal status -> CANCELLED

Status changes after creation go exclusively through conditional updates in
orders.transitions; nothing saves a status read earlier back over the row.
"""
import secrets
import string
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from inventory.models import Product
from . import lifecycle
from .pricing import line_cost, round_money

ORDER_NUMBER_ALPHABET = string.digits + string.ascii_uppercase


def generate_order_number(when=None) -> str:
    """ORD-<YYYYMMDD>-<4 base36 chars>."""
    when = when or timezone.now()
    suffix = ''.join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(4))
    return f"ORD-{when:%Y%m%d}-{suffix}"


class Order(models.Model):
    """
    Order entity: a customer's order delivered within their region.

    Status:
        - PENDING: Placed, stock reserved
        - CONFIRMED / PREPARING / OUT_FOR_DELIVERY: In progress
        - DELIVERED: Terminal
        - CANCELLED: Terminal, reachable from any non-terminal status
    """

    class Status(models.TextChoices):
        PENDING = lifecycle.PENDING, 'Pending'
        CONFIRMED = lifecycle.CONFIRMED, 'Confirmed'
        PREPARING = lifecycle.PREPARING, 'Preparing'
        OUT_FOR_DELIVERY = lifecycle.OUT_FOR_DELIVERY, 'Out for delivery'
        DELIVERED = lifecycle.DELIVERED, 'Delivered'
        CANCELLED = lifecycle.CANCELLED, 'Cancelled'

    order_number = models.CharField(
        max_length=20,
        unique=True,
        editable=False,
        help_text="Human readable order number"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='orders',
        help_text="Customer who placed the order"
    )
    region = models.CharField(
        max_length=32,
        db_index=True,
        help_text="Region captured from the customer's profile"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Total computed from catalog prices at creation"
    )
    shipping_address = models.JSONField(
        null=True,
        blank=True,
        help_text="Address snapshot taken at creation"
    )
    payment_snapshot = models.JSONField(
        null=True,
        blank=True,
        help_text="Card brand/last4/expiry/name only, never PAN or CVC"
    )

    # When each status was first entered
    pending_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    preparing_at = models.DateTimeField(null=True, blank=True)
    out_for_delivery_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='order_user_status_idx'),
            models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
            models.Index(fields=['status', 'pending_at'], name='order_status_pending_idx'),
            models.Index(fields=['status', 'confirmed_at'], name='order_status_confirmed_idx'),
            models.Index(fields=['status', 'preparing_at'], name='order_status_preparing_idx'),
            models.Index(fields=['status', 'out_for_delivery_at'], name='order_status_ofd_idx'),
        ]

    def __str__(self):
        return f"{self.order_number} ({self.status})"

    def save(self, *args, **kwargs):
        if not self.order_number:
            self.order_number = self._unique_order_number()
        super().save(*args, **kwargs)

    @classmethod
    def _unique_order_number(cls, attempts: int = 5) -> str:
        number = generate_order_number()
        for _ in range(attempts - 1):
            if not cls.objects.filter(order_number=number).exists():
                break
            number = generate_order_number()
        return number

    def stamp_status(self, status: str, at=None) -> None:
        """Record the first entry into ``status``; an existing stamp is kept."""
        field = lifecycle.timestamp_field(status)
        if getattr(self, field) is None:
            setattr(self, field, at or timezone.now())

    @property
    def status_timestamps(self) -> dict:
        """Entered statuses mapped to the instant they were first entered."""
        stamps = {}
        for status in lifecycle.ALL_STATUSES:
            value = getattr(self, lifecycle.timestamp_field(status))
            if value is not None:
                stamps[status] = value
        return stamps

    @property
    def is_terminal(self) -> bool:
        return lifecycle.is_terminal(self.status)

    @property
    def next_status(self):
        return lifecycle.next_status(self.status)


class OrderItem(models.Model):
    """
    OrderItem entity representing a weighed product in an order.

    Stores the price per 100 g at time of order to preserve historical pricing.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='order_items',
        help_text="Ordered product"
    )
    quantity_grams = models.PositiveIntegerField(
        validators=[MinValueValidator(50)],
        help_text="Quantity ordered in grams (multiple of 50)"
    )
    price_per_100g = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per 100 g at time of order"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity_grams}g {self.product.name} @ ${self.price_per_100g}/100g"

    @property
    def subtotal(self) -> Decimal:
        """Item cost rounded to the cent."""
        return round_money(line_cost(self.price_per_100g, self.quantity_grams))


class OrderNote(models.Model):
    """Append-only admin audit entry, e.g. a cancellation reason."""
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='admin_notes',
    )
    at = models.DateTimeField(default=timezone.now)
    note = models.TextField()

    class Meta:
        verbose_name = 'Admin Note'
        verbose_name_plural = 'Admin Notes'
        ordering = ['at', 'id']

    def __str__(self):
        return f"{self.order.order_number} @ {self.at:%Y-%m-%d %H:%M}: {self.note[:40]}"

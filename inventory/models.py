"""
Inventory Models - Catalog and regional stock.

Models:
    - Product: Goods sold by weight, priced per 100 g
    - Stock: Available grams of a product in one region (unique per product+region)
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from accounts.models import normalize_region


class Product(models.Model):
    """
    Product entity representing goods sold by weight.
    """
    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product name for display and search"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional product description"
    )
    category = models.CharField(
        max_length=100,
        blank=True,
        default='',
        db_index=True,
        help_text="Free-form category, e.g. 'fruits'"
    )
    price_per_100g = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Price per 100 grams (non-negative)"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['name', 'is_active'], name='product_name_active_idx'),
            models.Index(fields=['category', 'is_active'], name='product_category_active_idx'),
            models.Index(fields=['price_per_100g'], name='product_price_idx'),
        ]

    def __str__(self):
        return f"{self.name} (${self.price_per_100g}/100g)"


class Stock(models.Model):
    """
    Stock entity: grams of one product available in one region.

    Constraint: Exactly one stock row per product per region.
    Quantity never goes negative; order reservations only ever decrement
    it through a conditional update (see inventory.services.reserve).
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='stock_entries',
        help_text="Product held in stock"
    )
    region = models.CharField(
        max_length=32,
        db_index=True,
        help_text="Delivery region, stored lowercase"
    )
    quantity_grams = models.PositiveIntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Available quantity in grams"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Stock'
        verbose_name_plural = 'Stock'
        ordering = ['region', 'product']
        constraints = [
            models.UniqueConstraint(
                fields=['product', 'region'],
                name='unique_product_region_stock'
            )
        ]
        indexes = [
            models.Index(fields=['region', 'quantity_grams'], name='stock_region_qty_idx'),
        ]

    def __str__(self):
        return f"{self.product.name} @ {self.region}: {self.quantity_grams} g"

    def save(self, *args, **kwargs):
        self.region = normalize_region(self.region)
        super().save(*args, **kwargs)

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity_grams == 0

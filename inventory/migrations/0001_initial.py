from decimal import Decimal

import django.core.validators
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, help_text='Product name for display and search', max_length=200)),
                ('description', models.TextField(blank=True, default='', help_text='Optional product description')),
                ('category', models.CharField(blank=True, db_index=True, default='', help_text="Free-form category, e.g. 'fruits'", max_length=100)),
                ('price_per_100g', models.DecimalField(decimal_places=2, help_text='Price per 100 grams (non-negative)', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether product is available for ordering')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Product',
                'verbose_name_plural': 'Products',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['name', 'is_active'], name='product_name_active_idx'),
                    models.Index(fields=['category', 'is_active'], name='product_category_active_idx'),
                    models.Index(fields=['price_per_100g'], name='product_price_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Stock',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('region', models.CharField(db_index=True, help_text='Delivery region, stored lowercase', max_length=32)),
                ('quantity_grams', models.PositiveIntegerField(default=0, help_text='Available quantity in grams', validators=[django.core.validators.MinValueValidator(0)])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('product', models.ForeignKey(help_text='Product held in stock', on_delete=django.db.models.deletion.CASCADE, related_name='stock_entries', to='inventory.product')),
            ],
            options={
                'verbose_name': 'Stock',
                'verbose_name_plural': 'Stock',
                'ordering': ['region', 'product'],
                'indexes': [
                    models.Index(fields=['region', 'quantity_grams'], name='stock_region_qty_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('product', 'region'), name='unique_product_region_stock'),
                ],
            },
        ),
    ]

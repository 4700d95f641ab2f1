"""
Django Admin configuration for inventory models.
"""
from django.contrib import admin
from .models import Product, Stock


class StockInline(admin.TabularInline):
    model = Stock
    extra = 0
    fields = ['region', 'quantity_grams', 'updated_at']
    readonly_fields = ['updated_at']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'category', 'price_per_100g', 'is_active', 'created_at']
    list_filter = ['category', 'is_active', 'created_at']
    search_fields = ['name', 'description', 'category']
    ordering = ['name']
    inlines = [StockInline]


@admin.register(Stock)
class StockAdmin(admin.ModelAdmin):
    list_display = ['id', 'product', 'region', 'quantity_grams', 'is_out_of_stock', 'updated_at']
    list_filter = ['region', 'updated_at']
    search_fields = ['product__name', 'region']
    ordering = ['region', 'product']
    raw_id_fields = ['product']

    def is_out_of_stock(self, obj):
        return obj.is_out_of_stock
    is_out_of_stock.boolean = True
    is_out_of_stock.short_description = 'Out of Stock'

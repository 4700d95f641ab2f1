"""
Django Admin configuration for order models.

Status is read-only here: status changes go through the transition
engine (API endpoints) so they keep their conditional-update guarantees.
"""
from django.contrib import admin
from .models import Order, OrderItem, OrderNote


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'quantity_grams', 'price_per_100g', 'subtotal']
    can_delete = False

    def subtotal(self, obj):
        return f"${obj.subtotal}"
    subtotal.short_description = 'Subtotal'


class OrderNoteInline(admin.TabularInline):
    model = OrderNote
    extra = 0
    readonly_fields = ['at', 'note']
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'user', 'region', 'status', 'total_amount', 'item_count', 'created_at']
    list_filter = ['status', 'region', 'created_at']
    search_fields = ['order_number', 'user__username', 'user__email']
    ordering = ['-created_at']
    readonly_fields = [
        'order_number', 'user', 'region', 'status', 'total_amount',
        'shipping_address', 'payment_snapshot',
        'pending_at', 'confirmed_at', 'preparing_at', 'out_for_delivery_at',
        'delivered_at', 'cancelled_at', 'created_at', 'updated_at',
    ]
    inlines = [OrderItemInline, OrderNoteInline]

    def item_count(self, obj):
        return obj.items.count()
    item_count.short_description = 'Items'

    def has_add_permission(self, request):
        return False

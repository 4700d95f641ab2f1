"""
Serializers for order models.
"""
from rest_framework import serializers

from inventory.serializers import ProductMinimalSerializer
from .models import Order, OrderItem, OrderNote


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with product details."""
    product = ProductMinimalSerializer(read_only=True)
    subtotal = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        read_only=True
    )

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'quantity_grams', 'price_per_100g', 'subtotal']


class OrderNoteSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderNote
        fields = ['at', 'note']


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items and admin notes.
    Expects items__product and admin_notes to be prefetched.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    admin_notes = OrderNoteSerializer(many=True, read_only=True)
    status_timestamps = serializers.SerializerMethodField()
    next_status = serializers.CharField(read_only=True, allow_null=True)
    is_terminal = serializers.BooleanField(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'user', 'region', 'status',
            'next_status', 'is_terminal', 'status_timestamps',
            'total_amount', 'items', 'shipping_address', 'payment_snapshot',
            'admin_notes', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_status_timestamps(self, obj):
        field = serializers.DateTimeField()
        return {
            status: field.to_representation(value)
            for status, value in obj.status_timestamps.items()
        }


class OrderListSerializer(serializers.ModelSerializer):
    """Optimized serializer for listing orders."""
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'user', 'region', 'status',
            'total_amount', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class OrderItemCreateSerializer(serializers.Serializer):
    """
    One requested line item. Quantity rules (positive, 50 g steps) are
    enforced by the order service so they surface as domain errors.
    """
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField()


class OrderCreateSerializer(serializers.Serializer):
    """
    Serializer for creating orders via POST /orders/

    Request format:
    {
        "items": [
            {"product_id": 1, "quantity": 350},
            {"product_id": 3, "quantity": 100}
        ],
        "shipping_address": {"line1": "...", "city": "...", "postal_code": "..."},
        "payment": {"brand": "visa", "last4": "4242", "exp_month": 4, "exp_year": 2030}
    }

    The region is never read from the body; it comes from the user's profile.
    """
    items = OrderItemCreateSerializer(many=True)
    shipping_address = serializers.DictField(required=False, allow_null=True)
    payment = serializers.DictField(required=False, allow_null=True)


class AdvanceManySerializer(serializers.Serializer):
    # Raw values so malformed ids are reported per id instead of failing the request
    ids = serializers.ListField(child=serializers.JSONField())


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class StatusUpdateSerializer(serializers.Serializer):
    # Checked by the transition engine so unknown values map to invalid_status
    status = serializers.CharField(max_length=32)
    note = serializers.CharField(required=False, allow_blank=True, max_length=500)

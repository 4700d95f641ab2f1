"""
Serializers for inventory models.
Provides data validation and JSON conversion for API endpoints.
"""
from rest_framework import serializers
from .models import Product, Stock


class ProductSerializer(serializers.ModelSerializer):
    """
    Serializer for the public product listing.

    ``available_grams`` is only present when the view annotated the
    queryset for a region.
    """
    available_grams = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'description', 'category', 'price_per_100g',
            'is_active', 'available_grams', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_available_grams(self, obj):
        if not hasattr(obj, 'available_grams'):
            return None
        return obj.available_grams or 0


class ProductDetailSerializer(ProductSerializer):
    """Product with its stock in every region."""
    stock_by_region = serializers.SerializerMethodField()

    class Meta(ProductSerializer.Meta):
        fields = ProductSerializer.Meta.fields + ['stock_by_region']
        read_only_fields = fields

    def get_stock_by_region(self, obj):
        # Uses prefetched stock_entries
        return {
            entry.region: entry.quantity_grams
            for entry in obj.stock_entries.all()
        }


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested representations."""
    class Meta:
        model = Product
        fields = ['id', 'name', 'price_per_100g']


class StockSerializer(serializers.ModelSerializer):
    """
    Serializer for Stock rows with nested product.
    Uses select_related('product') in view.
    """
    product = ProductMinimalSerializer(read_only=True)
    is_out_of_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Stock
        fields = [
            'id', 'product', 'region', 'quantity_grams',
            'is_out_of_stock', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class StockCreateSerializer(serializers.Serializer):
    """
    Admin stock intake. Region and quantity rules are enforced by the
    ledger so they surface as domain errors.
    """
    product_id = serializers.IntegerField()
    region = serializers.CharField(max_length=32)
    quantity = serializers.IntegerField()


class StockQuantitySerializer(serializers.Serializer):
    quantity = serializers.IntegerField()

"""
Inventory API Views with optimized queries.

Public (read-only catalog):
- GET /products/ - Active products with keyword, category, price and region filters
- GET /products/{id}/ - Product detail with stock per region
- GET /regions/ - Regions that hold stock
- GET /availability/ - Grams available for one product in one region

Admin (stock ledger):
- GET/POST /admin/stocks/
- PATCH/DELETE /admin/stocks/{id}/
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db.models import IntegerField, OuterRef, Prefetch, Q, Subquery, Value
from django.db.models.functions import Coalesce
from rest_framework import generics, status
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.models import normalize_region
from core.exceptions import ProductNotFoundError
from . import services
from .models import Product, Stock
from .serializers import (
    ProductDetailSerializer,
    ProductSerializer,
    StockCreateSerializer,
    StockQuantitySerializer,
    StockSerializer,
)

logger = logging.getLogger(__name__)


def _decimal_param(request, name):
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


# =============================================================================
# Catalog Views
# =============================================================================

class ProductListView(generics.ListAPIView):
    """
    GET: List active products.

    Query Parameters:
        - q: Keyword to search in name, description and category
        - category: Exact category (case-insensitive)
        - min_price / max_price: Price per 100 g bounds
        - region: Annotate each product with available_grams in that region
        - in_stock: true to keep only products with stock (in region, if given)
        - page, limit: Pagination
    """
    permission_classes = [AllowAny]
    serializer_class = ProductSerializer

    def get_queryset(self):
        params = self.request.query_params
        queryset = Product.objects.filter(is_active=True)

        keyword = params.get('q', '').strip()
        if keyword:
            queryset = queryset.filter(
                Q(name__icontains=keyword) |
                Q(description__icontains=keyword) |
                Q(category__icontains=keyword)
            )

        category = params.get('category', '').strip()
        if category:
            queryset = queryset.filter(category__iexact=category)

        min_price = _decimal_param(self.request, 'min_price')
        if min_price is not None:
            queryset = queryset.filter(price_per_100g__gte=min_price)

        max_price = _decimal_param(self.request, 'max_price')
        if max_price is not None:
            queryset = queryset.filter(price_per_100g__lte=max_price)

        in_stock = params.get('in_stock', '').lower() in ('1', 'true', 'yes')
        region = normalize_region(params.get('region', ''))
        if region:
            stock_qty = Stock.objects.filter(
                product=OuterRef('pk'), region=region
            ).values('quantity_grams')[:1]
            queryset = queryset.annotate(
                available_grams=Coalesce(
                    Subquery(stock_qty, output_field=IntegerField()),
                    Value(0),
                )
            )
            if in_stock:
                queryset = queryset.filter(available_grams__gt=0)
        elif in_stock:
            queryset = queryset.filter(stock_entries__quantity_grams__gt=0).distinct()

        return queryset.order_by('name', 'id')


class ProductDetailView(generics.RetrieveAPIView):
    """GET: Active product with ``stock_by_region``."""
    permission_classes = [AllowAny]
    serializer_class = ProductDetailSerializer

    def get_queryset(self):
        return Product.objects.filter(is_active=True).prefetch_related(
            Prefetch('stock_entries', queryset=Stock.objects.order_by('region'))
        )

    def get_object(self):
        try:
            return self.get_queryset().get(pk=self.kwargs['pk'])
        except Product.DoesNotExist:
            raise ProductNotFoundError(self.kwargs['pk'])


class RegionListView(APIView):
    """GET: Distinct regions that have at least one stock row."""
    permission_classes = [AllowAny]

    def get(self, request):
        regions = (
            Stock.objects.order_by('region')
            .values_list('region', flat=True)
            .distinct()
        )
        return Response({'regions': list(regions)})


class AvailabilityView(APIView):
    """
    GET: Grams available for ``product_id`` in ``region``.

    Returns 0 when the product has no stock row in the region.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        region = normalize_region(request.query_params.get('region', ''))
        try:
            product_id = int(request.query_params.get('product_id', ''))
        except ValueError:
            raise ValidationError({'product_id': 'A valid integer is required.'})
        if not region:
            raise ValidationError({'region': 'This query parameter is required.'})

        if not Product.objects.filter(pk=product_id, is_active=True).exists():
            raise ProductNotFoundError(product_id)

        return Response({
            'product_id': product_id,
            'region': region,
            'available_grams': services.available_grams(product_id, region),
        })


# =============================================================================
# Admin Stock Views
# =============================================================================

class StockListCreateView(generics.ListAPIView):
    """
    GET: List stock rows with product info
    POST: Create the stock row for a (product, region) pair

    Query Parameters (GET):
        - product_id: Filter by product
        - region: Filter by region
    """
    permission_classes = [IsAdminUser]
    serializer_class = StockSerializer

    def get_queryset(self):
        queryset = Stock.objects.select_related('product')

        product_id = self.request.query_params.get('product_id')
        if product_id and product_id.isdigit():
            queryset = queryset.filter(product_id=product_id)

        region = normalize_region(self.request.query_params.get('region', ''))
        if region:
            queryset = queryset.filter(region=region)

        return queryset.order_by('region', 'product__name', 'id')

    def post(self, request):
        serializer = StockCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        stock = services.create_stock(data['product_id'], data['region'], data['quantity'])
        stock = Stock.objects.select_related('product').get(pk=stock.pk)
        return Response(StockSerializer(stock).data, status=status.HTTP_201_CREATED)


class StockDetailView(APIView):
    """
    PATCH: Set the quantity of a stock row ({"quantity": grams})
    DELETE: Remove a stock row
    """
    permission_classes = [IsAdminUser]

    def patch(self, request, pk):
        serializer = StockQuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        stock = services.adjust(pk, serializer.validated_data['quantity'])
        logger.info(f"Admin {request.user.pk} set stock #{pk} to {stock.quantity_grams}g")
        return Response(StockSerializer(stock).data)

    def delete(self, request, pk):
        services.delete_stock(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

"""
Order API Views.

Customer:
- GET /orders/ - List own orders
- POST /orders/ - Create order with atomic stock reservation
- GET /orders/{id}/ - Own order detail

Admin:
- GET /admin/orders/ - List all orders
- GET /admin/orders/stats/ - Dashboard counters
- GET /admin/orders/{id}/ - Order detail
- POST /admin/orders/{id}/advance/ - Advance one step
- POST /admin/orders/advance-many/ - Advance a batch of orders one step each
- POST /admin/orders/{id}/cancel/ - Cancel a non-terminal order
- PATCH /admin/orders/{id}/status/ - Strict status change (next status only)

Domain errors propagate to core.exceptions.custom_exception_handler.
"""
import logging

from django.conf import settings
from rest_framework import generics, serializers, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.identity import CallerIdentity
from core.rate_limiting import rate_limit
from .models import Order
from .serializers import (
    AdvanceManySerializer,
    CancelOrderSerializer,
    OrderCreateSerializer,
    OrderListSerializer,
    OrderSerializer,
    StatusUpdateSerializer,
)
from .services import create_order, dashboard_stats, get_order_for_caller, orders_for_caller
from .transitions import advance_many, advance_order, cancel_order, update_status

logger = logging.getLogger(__name__)


def _status_filter(request):
    value = request.query_params.get('status', '').strip().lower()
    return value if value in Order.Status.values else None


# =============================================================================
# Customer Views
# =============================================================================

class OrderListCreateView(generics.ListCreateAPIView):
    """
    GET: List the caller's orders, newest first
    POST: Create a new order with atomic transaction handling

    Query Parameters (GET):
        - status: Filter by status
        - page, limit: Pagination

    Request Body (POST): see OrderCreateSerializer
    """
    permission_classes = [IsAuthenticated]

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return OrderCreateSerializer
        return OrderListSerializer

    def get_queryset(self):
        caller = CallerIdentity.from_user(self.request.user)
        return orders_for_caller(caller, status=_status_filter(self.request))

    @rate_limit(max_requests=settings.ORDER_CREATE_RATE_LIMIT, window_seconds=60)
    def create(self, request, *args, **kwargs):
        """
        Create order with atomic transaction handling.

        Returns:
            - 201: Order created (PENDING)
            - 400: Validation error
            - 409: Insufficient stock
        """
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        caller = CallerIdentity.from_user(request.user)
        order = create_order(
            caller,
            data['items'],
            shipping_address=data.get('shipping_address'),
            payment=data.get('payment'),
        )

        # Fetch fresh order with all relations
        order = get_order_for_caller(caller, order.id, own_only=True)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    """GET: Retrieve one of the caller's orders."""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        caller = CallerIdentity.from_user(request.user)
        order = get_order_for_caller(caller, pk, own_only=True)
        return Response(OrderSerializer(order).data)


# =============================================================================
# Admin Views
# =============================================================================

class AdminOrderListView(generics.ListAPIView):
    """
    GET: List all orders.

    Query Parameters:
        - status: Filter by status
        - region: Filter by region
    """
    permission_classes = [IsAdminUser]
    serializer_class = OrderListSerializer

    def get_queryset(self):
        queryset = Order.objects.select_related('user').prefetch_related('items')

        status_value = _status_filter(self.request)
        if status_value:
            queryset = queryset.filter(status=status_value)

        region = self.request.query_params.get('region', '').strip().lower()
        if region:
            queryset = queryset.filter(region=region)

        return queryset.order_by('-created_at', '-id')


class AdminOrderDetailView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request, pk):
        order = get_order_for_caller(CallerIdentity.from_user(request.user), pk)
        return Response(OrderSerializer(order).data)


class AdminOrderStatsView(APIView):
    """GET: Order, product and user counters for the admin dashboard."""
    permission_classes = [IsAdminUser]

    def get(self, request):
        return Response(dashboard_stats())


class AdvanceOrderView(APIView):
    """POST: Move an order one step forward along the status flow."""
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        result = advance_order(pk)
        return Response({
            'order': OrderSerializer(result.order).data,
            'prev_status': result.prev_status,
            'next_status': result.next_status,
        })


class AdvanceManyOrdersView(APIView):
    """
    POST: Advance each listed order one step.

    Request: {"ids": [1, 2, 3]}
    Response: {"ok": [1], "skipped": [{"id": 2, "reason": "terminal"}, ...]}
    """
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = AdvanceManySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = advance_many(serializer.validated_data['ids'])
        return Response({'ok': result.ok, 'skipped': result.skipped})


class CancelOrderView(APIView):
    """POST: Cancel a non-terminal order. Body: {"reason": "..."} (optional)."""
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = cancel_order(pk, serializer.validated_data.get('reason'))
        logger.info(f"Admin {request.user.pk} cancelled order #{pk}")
        return Response({
            'order': OrderSerializer(result.order).data,
            'cancelled_at': serializers.DateTimeField().to_representation(result.cancelled_at),
            'reason': result.reason,
        })


class OrderStatusUpdateView(APIView):
    """PATCH: Set the status to the immediate next status. Body: {"status": "...", "note": "..."}."""
    permission_classes = [IsAdminUser]

    def patch(self, request, pk):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = update_status(
            pk,
            serializer.validated_data['status'],
            note=serializer.validated_data.get('note'),
        )
        return Response({
            'order': OrderSerializer(result.order).data,
            'prev_status': result.prev_status,
            'next_status': result.next_status,
        })

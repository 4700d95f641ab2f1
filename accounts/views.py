"""
Account API Views.

Customer:
- GET /me/details/ - Saved region and delivery address
- PUT /me/details/ - Upsert region and/or address (payment fields rejected)

Admin:
- GET /admin/users/ - List users (q, role filters, paginated)
- DELETE /admin/users/{id}/ - Delete a user without orders
"""
import logging

from django.contrib.auth import get_user_model
from django.db.models import Q
from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import CustomerDetailsSerializer, UserSerializer
from .services import delete_user, get_customer_details, save_customer_details

logger = logging.getLogger(__name__)


class MyDetailsView(APIView):
    """
    GET: The caller's region and saved address (address is null until saved)
    PUT: Save region and/or address

    Request Body (PUT):
        {
            "region": "east",
            "address": {"line1": "...", "line2": "", "city": "...",
                        "postal_code": "...", "notes": ""}
        }
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CustomerDetailsSerializer(get_customer_details(request.user)).data)

    def put(self, request):
        details = save_customer_details(request.user, request.data)
        return Response(CustomerDetailsSerializer(details).data)


class AdminUserListView(generics.ListAPIView):
    """
    GET: List user accounts, newest first.

    Query Parameters:
        - q: Search username, name and email
        - role: admin or customer
        - page, limit: Pagination
    """
    permission_classes = [IsAdminUser]
    serializer_class = UserSerializer

    def get_queryset(self):
        queryset = get_user_model().objects.select_related('profile')

        keyword = self.request.query_params.get('q', '').strip()
        if keyword:
            queryset = queryset.filter(
                Q(username__icontains=keyword) |
                Q(first_name__icontains=keyword) |
                Q(last_name__icontains=keyword) |
                Q(email__icontains=keyword)
            )

        role = self.request.query_params.get('role', '').strip().lower()
        if role == 'admin':
            queryset = queryset.filter(is_staff=True)
        elif role == 'customer':
            queryset = queryset.filter(is_staff=False)

        return queryset.order_by('-date_joined', '-id')


class AdminUserDetailView(APIView):
    """DELETE: Remove a user account."""
    permission_classes = [IsAdminUser]

    def delete(self, request, pk):
        delete_user(request.user.pk, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

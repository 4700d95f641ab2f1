"""
URL routing for order API endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    # Customer
    path('orders/', views.OrderListCreateView.as_view(), name='order-list'),
    path('orders/<int:pk>/', views.OrderDetailView.as_view(), name='order-detail'),

    # Admin
    path('admin/orders/', views.AdminOrderListView.as_view(), name='admin-order-list'),
    path('admin/orders/stats/', views.AdminOrderStatsView.as_view(), name='admin-order-stats'),
    path('admin/orders/advance-many/', views.AdvanceManyOrdersView.as_view(), name='admin-order-advance-many'),
    path('admin/orders/<int:pk>/', views.AdminOrderDetailView.as_view(), name='admin-order-detail'),
    path('admin/orders/<int:pk>/advance/', views.AdvanceOrderView.as_view(), name='admin-order-advance'),
    path('admin/orders/<int:pk>/cancel/', views.CancelOrderView.as_view(), name='admin-order-cancel'),
    path('admin/orders/<int:pk>/status/', views.OrderStatusUpdateView.as_view(), name='admin-order-status'),
]

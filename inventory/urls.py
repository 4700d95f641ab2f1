"""
URL routing for inventory API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Catalog
    path('products/', views.ProductListView.as_view(), name='product-list'),
    path('products/<int:pk>/', views.ProductDetailView.as_view(), name='product-detail'),
    path('regions/', views.RegionListView.as_view(), name='region-list'),
    path('availability/', views.AvailabilityView.as_view(), name='availability'),

    # Admin stock ledger
    path('admin/stocks/', views.StockListCreateView.as_view(), name='admin-stock-list'),
    path('admin/stocks/<int:pk>/', views.StockDetailView.as_view(), name='admin-stock-detail'),
]

"""
URL routing for account API endpoints.
"""
from django.urls import path
from . import views

app_name = 'accounts'

urlpatterns = [
    # Customer
    path('me/details/', views.MyDetailsView.as_view(), name='my-details'),

    # Admin
    path('admin/users/', views.AdminUserListView.as_view(), name='admin-user-list'),
    path('admin/users/<int:pk>/', views.AdminUserDetailView.as_view(), name='admin-user-detail'),
]

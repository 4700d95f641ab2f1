"""
Django Admin configuration for account models.
"""
from django.contrib import admin
from .models import CustomerDetails, Profile


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'region', 'created_at']
    list_filter = ['region']
    search_fields = ['user__username', 'user__email']
    raw_id_fields = ['user']


@admin.register(CustomerDetails)
class CustomerDetailsAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'city', 'postal_code', 'updated_at']
    search_fields = ['user__username', 'city', 'postal_code']
    raw_id_fields = ['user']

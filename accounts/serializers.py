"""
Serializers for account endpoints.
"""
from django.contrib.auth import get_user_model
from rest_framework import serializers


class CustomerDetailsSerializer(serializers.Serializer):
    """Read shape of the caller's saved details."""
    region = serializers.CharField(read_only=True)
    address = serializers.DictField(child=serializers.CharField(allow_blank=True), allow_null=True, read_only=True)
    updated_at = serializers.DateTimeField(allow_null=True, read_only=True)


class UserSerializer(serializers.ModelSerializer):
    """Admin listing of user accounts. Passwords are never exposed."""
    role = serializers.SerializerMethodField()
    region = serializers.SerializerMethodField()

    class Meta:
        model = get_user_model()
        fields = [
            'id', 'username', 'email', 'first_name', 'last_name',
            'role', 'region', 'is_active', 'date_joined'
        ]
        read_only_fields = fields

    def get_role(self, obj):
        return 'admin' if obj.is_staff else 'customer'

    def get_region(self, obj):
        profile = getattr(obj, 'profile', None)
        return profile.region if profile else ''

"""
Account services - saved customer details and admin user management.

The saved details hold the delivery region (on the profile) and one
delivery address. Card numbers and CVCs are refused outright, the same
way order creation refuses them.
"""
import logging
import re
from typing import Dict, Mapping, Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import ProtectedError

from core.exceptions import (
    InvalidRegionError,
    InvalidShippingAddressError,
    PaymentFieldsRejectedError,
    SelfDeleteError,
    UserHasOrdersError,
    UserNotFoundError,
)
from .models import CustomerDetails, Profile, normalize_region

logger = logging.getLogger(__name__)

REJECTED_PAYMENT_FIELDS = ('payment', 'card_number', 'cvc')

REGION_RE = re.compile(r'^[a-z0-9][a-z0-9_-]*$')


def validate_region(value) -> str:
    """
    Raises:
        InvalidRegionError: Empty, too long, or not a simple slug
    """
    region = normalize_region(value) if isinstance(value, str) else ''
    max_length = Profile._meta.get_field('region').max_length
    if not region or len(region) > max_length or not REGION_RE.match(region):
        raise InvalidRegionError(value)
    return region


def build_address(address) -> Dict[str, str]:
    """
    Normalize a saved address. Every field is optional; missing ones are
    stored empty, unknown keys are dropped.

    Raises:
        InvalidShippingAddressError: Not an object, non-string or too long values
    """
    if not isinstance(address, Mapping):
        raise InvalidShippingAddressError("address must be an object")

    normalized = {}
    for name in CustomerDetails.ADDRESS_FIELDS:
        value = address.get(name)
        if value is None:
            value = ''
        if not isinstance(value, str):
            raise InvalidShippingAddressError(f"address.{name} must be a string")
        value = value.strip()
        max_length = CustomerDetails._meta.get_field(name).max_length
        if len(value) > max_length:
            raise InvalidShippingAddressError(
                f"address.{name} must be at most {max_length} characters"
            )
        normalized[name] = value
    return normalized


def get_customer_details(user) -> Dict:
    """Region and saved address for ``user``; address is None until first saved."""
    region = (
        Profile.objects.filter(user_id=user.pk)
        .values_list('region', flat=True)
        .first()
    )
    details = CustomerDetails.objects.filter(user_id=user.pk).first()
    return {
        'region': region or '',
        'address': details.address if details else None,
        'updated_at': details.updated_at if details else None,
    }


def save_customer_details(user, data: Optional[Mapping]) -> Dict:
    """
    Upsert the caller's region and/or delivery address.

    Body: {"region": "east", "address": {"line1", "line2", "city", "postal_code", "notes"}}

    Raises:
        PaymentFieldsRejectedError: Card number, CVC or payment object sent
        InvalidRegionError: Bad region
        InvalidShippingAddressError: Bad or missing address
    """
    data = data or {}
    rejected = [f for f in REJECTED_PAYMENT_FIELDS if data.get(f) not in (None, '', {})]
    if rejected:
        raise PaymentFieldsRejectedError(rejected)

    raw_region = data.get('region')
    raw_address = data.get('address')
    if raw_region is None and raw_address is None:
        raise InvalidShippingAddressError("address or region is required")

    region = validate_region(raw_region) if raw_region is not None else None
    address = build_address(raw_address) if raw_address is not None else None

    with transaction.atomic():
        if region is not None:
            Profile.objects.update_or_create(user=user, defaults={'region': region})
        if address is not None:
            CustomerDetails.objects.update_or_create(user=user, defaults=address)

    logger.info(
        f"User {user.pk} saved details: region={region}, address={address is not None}"
    )
    return get_customer_details(user)


def delete_user(actor_id, user_id) -> None:
    """
    Admin removal of a user account. Users who own orders are kept so order
    history stays intact.

    Raises:
        SelfDeleteError: Admin tried to delete their own account
        UserNotFoundError: Unknown id
        UserHasOrdersError: The user owns orders
    """
    if actor_id == user_id:
        raise SelfDeleteError()

    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        raise UserNotFoundError(user_id)

    try:
        with transaction.atomic():
            user.delete()
    except ProtectedError:
        raise UserHasOrdersError(user_id)

    logger.info(f"Admin {actor_id} deleted user {user_id}")

"""
Caller identity consumed by the order services.

Token/session issuance lives outside this project; views only turn the
authenticated request user into a CallerIdentity.
"""
from dataclasses import dataclass
from typing import Optional

from .models import Profile, normalize_region


@dataclass(frozen=True)
class CallerIdentity:
    user_id: int
    role: str
    region: str = ''

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    @classmethod
    def from_user(cls, user) -> Optional['CallerIdentity']:
        """Build an identity for ``user``; anonymous or missing users give None."""
        if user is None or not user.is_authenticated:
            return None
        region = (
            Profile.objects.filter(user_id=user.pk)
            .values_list('region', flat=True)
            .first()
        )
        return cls(
            user_id=user.pk,
            role='admin' if user.is_staff else 'customer',
            region=normalize_region(region),
        )

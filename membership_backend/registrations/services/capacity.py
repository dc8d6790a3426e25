# registrations/services/capacity.py

from __future__ import annotations

from django.db.models import Q
from django.utils import timezone

from registrations.models import RegistrationCategory, UserRegistration


def occupied_seats(category: RegistrationCategory, *, exclude_user=None, now=None) -> int:
    """
    Seats taken in a category: paid, processing, or unexpired awaiting_payment.
    """
    now = now or timezone.now()
    qs = UserRegistration.objects.filter(registration_category=category).filter(
        Q(payment_status__in=[UserRegistration.STATUS_PAID, UserRegistration.STATUS_PROCESSING])
        | Q(
            payment_status=UserRegistration.STATUS_AWAITING_PAYMENT,
            reservation_expires_at__gt=now,
        )
    )
    if exclude_user is not None:
        qs = qs.exclude(user=exclude_user)
    return qs.count()


def has_capacity(category: RegistrationCategory, *, exclude_user=None) -> bool:
    if category.max_capacity is None:
        return True
    return occupied_seats(category, exclude_user=exclude_user) < category.max_capacity

# backend/testing.py

"""
Shared fixtures for the per-app test suites.

Plain functions (no factory library): each returns saved rows with the
accounting codes staging needs.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta

from django.contrib.auth import get_user_model
from django.utils import timezone

from accounting.models import XeroConnection
from discounts.models import DiscountCategory, DiscountCode
from payments.models import Payment
from registrations.models import Membership, Registration, RegistrationCategory, Season, UserRegistration

User = get_user_model()


def make_user(*, role: str = "member", email: str | None = None, **extra):
    return User.objects.create_user(
        email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
        password="pass",
        role=role,
        first_name=extra.pop("first_name", "Test"),
        last_name=extra.pop("last_name", role.title()),
        **extra,
    )


def make_season(**extra) -> Season:
    today = date.today()
    return Season.objects.create(
        name=extra.pop("name", f"Season {today.year}"),
        start_date=extra.pop("start_date", today - timedelta(days=30)),
        end_date=extra.pop("end_date", today + timedelta(days=300)),
        **extra,
    )


def make_registration(*, season: Season | None = None, name: str = "Summer League") -> Registration:
    return Registration.objects.create(season=season or make_season(), name=name)


def make_category(registration: Registration, *, name: str, price: int, code: str, **extra) -> RegistrationCategory:
    return RegistrationCategory.objects.create(
        registration=registration,
        name=name,
        price=price,
        accounting_code=code,
        **extra,
    )


def make_membership(*, price_monthly: int = 2500, code: str = "210") -> Membership:
    return Membership.objects.create(name="Full Membership", price_monthly=price_monthly, accounting_code=code)


def make_discount_code(*, code: str = "HARDSHIP", percentage: int = 20, max_per_season=None, accounting_code="450"):
    category = DiscountCategory.objects.create(
        name=f"{code.title()} discounts",
        accounting_code=accounting_code,
        max_discount_per_user_per_season=max_per_season,
    )
    return DiscountCode.objects.create(code=code, category=category, percentage=percentage)


def make_completed_payment(user, *, total: int, discount: int = 0, intent_id: str | None = None) -> Payment:
    return Payment.objects.create(
        user=user,
        total_amount=total,
        discount_amount=discount,
        final_amount=total - discount,
        stripe_payment_intent_id=intent_id or f"pi_{uuid.uuid4().hex[:12]}",
        status=Payment.STATUS_COMPLETED,
        completed_at=timezone.now(),
    )


def make_paid_registration(user, category: RegistrationCategory, *, discount_code=None, discount: int = 0):
    """A paid UserRegistration plus its completed Payment."""
    payment = make_completed_payment(user, total=category.price, discount=discount)
    entry = UserRegistration.objects.create(
        user=user,
        registration=category.registration,
        registration_category=category,
        payment_status=UserRegistration.STATUS_PAID,
        registration_fee=category.price,
        amount_paid=category.price - discount,
        discount_amount=discount,
        discount_code=discount_code,
        payment=payment,
        registered_at=timezone.now(),
    )
    return entry, payment


def make_connection(tenant_id: str = "tenant-1") -> XeroConnection:
    return XeroConnection.objects.create(
        tenant_id=tenant_id,
        tenant_name="Test Club",
        access_token="token",
        refresh_token="refresh",
        expires_at=timezone.now() + timedelta(hours=1),
    )

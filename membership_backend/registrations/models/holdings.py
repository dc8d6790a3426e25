# registrations/models/holdings.py

"""
PATH: registrations/models/holdings.py

What a member actually holds:
- UserMembership: one row per paid membership purchase (idempotent on the
  Stripe payment intent id, so webhook redelivery cannot duplicate it).
- UserRegistration: one row per (user, registration); the category can be
  changed later by an admin (upgrade / downgrade / lateral move).
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from registrations.models.catalogue import Membership, Registration, RegistrationCategory


class UserMembership(models.Model):
    STATUS_PAID = "paid"
    STATUS_REFUNDED = "refunded"

    STATUS_CHOICES = [
        (STATUS_PAID, "Paid"),
        (STATUS_REFUNDED, "Refunded"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="memberships",
    )
    membership = models.ForeignKey(Membership, on_delete=models.PROTECT, related_name="holders")

    valid_from = models.DateField()
    valid_until = models.DateField()
    months_purchased = models.PositiveIntegerField()
    amount_paid = models.PositiveIntegerField(default=0)

    payment_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PAID)
    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="user_memberships",
    )
    stripe_payment_intent_id = models.CharField(max_length=255, unique=True, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-valid_until"]
        indexes = [
            models.Index(fields=["user", "membership", "valid_until"], name="user_membership_validity_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(valid_until__gte=models.F("valid_from")),
                name="chk_user_membership_dates_ordered",
            ),
        ]

    def __str__(self):
        return f"{self.user} | {self.membership} | {self.valid_from}..{self.valid_until}"


class UserRegistration(models.Model):
    STATUS_AWAITING_PAYMENT = "awaiting_payment"
    STATUS_PROCESSING = "processing"
    STATUS_PAID = "paid"
    STATUS_FAILED = "failed"
    STATUS_REFUNDED = "refunded"

    STATUS_CHOICES = [
        (STATUS_AWAITING_PAYMENT, "Awaiting Payment"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_PAID, "Paid"),
        (STATUS_FAILED, "Failed"),
        (STATUS_REFUNDED, "Refunded"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="registrations",
    )
    registration = models.ForeignKey(Registration, on_delete=models.PROTECT, related_name="entries")
    registration_category = models.ForeignKey(
        RegistrationCategory,
        on_delete=models.PROTECT,
        related_name="entries",
    )

    payment_status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_AWAITING_PAYMENT,
    )

    # Money (cents)
    registration_fee = models.PositiveIntegerField(default=0)
    amount_paid = models.PositiveIntegerField(default=0)
    discount_amount = models.PositiveIntegerField(default=0)

    discount_code = models.ForeignKey(
        "discounts.DiscountCode",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="registrations",
    )
    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="user_registrations",
    )

    reservation_expires_at = models.DateTimeField(null=True, blank=True)
    registered_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["registration_category", "payment_status"], name="user_reg_category_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "registration"],
                name="uniq_user_registration",
            ),
        ]

    def holds_capacity(self, *, now=None) -> bool:
        """
        Paid and processing rows always hold a seat; awaiting_payment rows
        hold one until their reservation expires.
        """
        if self.payment_status in {self.STATUS_PAID, self.STATUS_PROCESSING}:
            return True
        if self.payment_status == self.STATUS_AWAITING_PAYMENT:
            now = now or timezone.now()
            return self.reservation_expires_at is not None and self.reservation_expires_at > now
        return False

    def __str__(self):
        return f"{self.user} | {self.registration_category} | {self.payment_status}"

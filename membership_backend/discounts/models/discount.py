# discounts/models/discount.py

"""
PATH: discounts/models/discount.py

Discount catalogue + usage ledger.

Rules:
- DiscountUsage is append-only. A member's usage of a category in a season
  is SUM(amount_saved); corrections are new rows, never edits.
- A DiscountCategory may cap the total discount a member can receive per
  season (max_discount_per_user_per_season, cents). NULL or <= 0 = no cap.
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class DiscountCategory(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120, unique=True)
    accounting_code = models.CharField(max_length=20, blank=True, default="")
    max_discount_per_user_per_season = models.IntegerField(
        null=True,
        blank=True,
        help_text="Cents. Empty or <= 0 means unlimited.",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "Discount categories"

    @property
    def has_seasonal_cap(self) -> bool:
        return bool(self.max_discount_per_user_per_season) and self.max_discount_per_user_per_season > 0

    def __str__(self):
        return self.name


class DiscountCode(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=50, unique=True)
    category = models.ForeignKey(DiscountCategory, on_delete=models.PROTECT, related_name="codes")
    percentage = models.PositiveSmallIntegerField(help_text="Whole percent, 1-100")
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["code"]
        constraints = [
            models.CheckConstraint(
                condition=Q(percentage__gte=1) & Q(percentage__lte=100),
                name="chk_discount_code_percentage_range",
            ),
        ]

    def clean(self):
        self.code = (self.code or "").strip().upper()
        if not self.code:
            raise ValidationError("Discount code is required")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def discount_for(self, amount: int) -> int:
        """Discount (cents) this code gives on `amount`, rounded half-up."""
        return (amount * self.percentage + 50) // 100

    def __str__(self):
        return self.code


class DiscountUsage(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="discount_usage",
    )
    discount_code = models.ForeignKey(DiscountCode, on_delete=models.PROTECT, related_name="usage")
    discount_category = models.ForeignKey(
        DiscountCategory,
        on_delete=models.PROTECT,
        related_name="usage",
    )
    season = models.ForeignKey("registrations.Season", on_delete=models.PROTECT, related_name="discount_usage")
    registration = models.ForeignKey(
        "registrations.Registration",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="discount_usage",
    )
    refund = models.ForeignKey(
        "payments.Refund",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="discount_usage",
    )
    amount_saved = models.IntegerField(help_text="Cents")
    used_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "discount_usage"
        ordering = ["-used_at"]
        indexes = [
            models.Index(fields=["user", "discount_category", "season"], name="discount_usage_season_idx"),
        ]

    def __str__(self):
        return f"{self.user} | {self.discount_code} | {self.amount_saved}"

# registrations/models/catalogue.py

from __future__ import annotations

import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class Season(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120)
    start_date = models.DateField()
    end_date = models.DateField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-start_date"]
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__gte=models.F("start_date")),
                name="chk_season_dates_ordered",
            ),
        ]

    def __str__(self):
        return self.name


class Membership(models.Model):
    """
    A purchasable membership type, priced per month (cents).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120)
    description = models.TextField(blank=True, default="")
    price_monthly = models.PositiveIntegerField(help_text="Price per month in cents")
    accounting_code = models.CharField(max_length=20, blank=True, default="")
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Registration(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    season = models.ForeignKey(Season, on_delete=models.PROTECT, related_name="registrations")
    name = models.CharField(max_length=150)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        indexes = [models.Index(fields=["season", "is_active"], name="reg_season_active_idx")]

    def __str__(self):
        return f"{self.name} ({self.season})"


class RegistrationCategory(models.Model):
    """
    A priced tier inside a registration (e.g. "Adult", "Junior").

    max_capacity NULL means unlimited.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    registration = models.ForeignKey(
        Registration,
        on_delete=models.CASCADE,
        related_name="categories",
    )
    name = models.CharField(max_length=120)
    price = models.PositiveIntegerField(help_text="Price in cents")
    accounting_code = models.CharField(max_length=20, blank=True, default="")
    max_capacity = models.PositiveIntegerField(null=True, blank=True)
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["registration", "sort_order", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["registration", "name"],
                name="uniq_registration_category_name",
            ),
        ]

    def clean(self):
        self.name = (self.name or "").strip()
        if not self.name:
            raise ValidationError("Category name is required")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.registration.name} - {self.name}"

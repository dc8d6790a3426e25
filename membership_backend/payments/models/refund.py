# payments/models/refund.py

"""
PATH: payments/models/refund.py

Refund lifecycle:

  staged -> pending -> processing -> completed
                                  `-> failed
  staged -> ignore   (admin cancelled before submission)

- The accounting credit note is reachable as `refund.staging_invoice`
  (a one-to-one owned by the staging row).
- Amounts are positive cents; the direction is implied.
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q


class Refund(models.Model):
    STATUS_STAGED = "staged"
    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_IGNORE = "ignore"

    STATUS_CHOICES = [
        (STATUS_STAGED, "Staged"),
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_IGNORE, "Ignore"),
    ]

    # Money that is gone (or going) from the payment's refundable balance.
    COMMITTED_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED)

    TYPE_PROPORTIONAL = "proportional"
    TYPE_DISCOUNT_CODE = "discount_code"

    TYPE_CHOICES = [
        (TYPE_PROPORTIONAL, "Proportional"),
        (TYPE_DISCOUNT_CODE, "Discount Code"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payment = models.ForeignKey("payments.Payment", on_delete=models.PROTECT, related_name="refunds")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="refunds",
    )

    amount = models.PositiveIntegerField(help_text="Cents")
    refund_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_PROPORTIONAL)
    reason = models.TextField(blank=True, default="")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_STAGED)

    discount_code = models.ForeignKey(
        "discounts.DiscountCode",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refunds",
    )

    stripe_refund_id = models.CharField(max_length=255, blank=True, default="")
    failure_reason = models.TextField(blank=True, default="")

    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_refunds",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "refunds"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["payment", "status"], name="refunds_payment_status_idx"),
            models.Index(fields=["status", "created_at"], name="refunds_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(refund_type="discount_code") | Q(discount_code__isnull=False),
                name="chk_refund_discount_code_present",
            ),
        ]

    def __str__(self):
        return f"Refund {self.id} | {self.amount} | {self.status}"

# payments/models/payment.py

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone


class Payment(models.Model):
    """
    One member payment (Stripe PaymentIntent or a free checkout).

    Key rule:
    - Created PENDING at checkout.
    - Becomes COMPLETED only after the Stripe webhook confirms it
      (or immediately for free checkouts).
    """

    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_REFUNDED = "refunded"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_REFUNDED, "Refunded"),
    ]

    METHOD_STRIPE = "stripe"
    METHOD_FREE = "free"

    METHOD_CHOICES = [
        (METHOD_STRIPE, "Stripe"),
        (METHOD_FREE, "Free"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments",
    )

    # Money (cents)
    total_amount = models.PositiveIntegerField(default=0)
    discount_amount = models.PositiveIntegerField(default=0)
    final_amount = models.PositiveIntegerField(default=0)

    stripe_payment_intent_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    stripe_charge_id = models.CharField(max_length=255, blank=True, default="")

    payment_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default=METHOD_STRIPE)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="payments_pa_status_idx"),
            models.Index(fields=["user", "created_at"], name="payments_pa_user_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(final_amount__lte=models.F("total_amount")),
                name="chk_payment_final_not_above_total",
            ),
        ]

    def mark_completed(self, *, charge_id: str = "") -> None:
        self.status = self.STATUS_COMPLETED
        if charge_id:
            self.stripe_charge_id = charge_id
        if not self.completed_at:
            self.completed_at = timezone.now()
        self.save(update_fields=["status", "stripe_charge_id", "completed_at", "updated_at"])

    def refunded_amount(self) -> int:
        from payments.models.refund import Refund

        total = self.refunds.filter(status__in=Refund.COMMITTED_STATUSES).aggregate(total=Sum("amount"))["total"]
        return int(total or 0)

    def refundable_amount(self) -> int:
        return max(0, self.final_amount - self.refunded_amount())

    def __str__(self):
        return f"{self.id} | {self.final_amount} | {self.status}"

# accounting/models/staging.py

"""
======================================================
PATH: accounting/models/staging.py
======================================================
STAGING STORE

Local drafts of what will be sent to Xero:
- StagingInvoice: an ACCREC invoice or ACCRECCREDIT credit note
- StagingLineItem: its lines (signed cents)
- StagingPayment: a payment application against one StagingInvoice

Sync lifecycle (shared by invoices and payments):

  staged -> pending -> processing -> synced
                                  `-> failed -> (retry at next_attempt_at)
  staged -> ignore

Guarantees:
- net_amount == SUM(line_amount) for every invoice written by the
  staging manager (checked with is_balanced()).
- processing rows carry claimed_at + claimed_from_status so an interrupted
  run can hand them back.
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone


class SyncTrackedModel(models.Model):
    SYNC_DRAFT = "draft"
    SYNC_STAGED = "staged"
    SYNC_PENDING = "pending"
    SYNC_PROCESSING = "processing"
    SYNC_SYNCED = "synced"
    SYNC_FAILED = "failed"
    SYNC_IGNORE = "ignore"

    SYNC_STATUS_CHOICES = [
        (SYNC_DRAFT, "Draft"),
        (SYNC_STAGED, "Staged"),
        (SYNC_PENDING, "Pending"),
        (SYNC_PROCESSING, "Processing"),
        (SYNC_SYNCED, "Synced"),
        (SYNC_FAILED, "Failed"),
        (SYNC_IGNORE, "Ignore"),
    ]

    sync_status = models.CharField(max_length=20, choices=SYNC_STATUS_CHOICES, default=SYNC_STAGED)
    sync_error = models.TextField(blank=True, default="")

    tenant_id = models.CharField(max_length=64, null=True, blank=True)

    attempt_count = models.PositiveIntegerField(default=0)
    next_attempt_at = models.DateTimeField(null=True, blank=True)

    claimed_at = models.DateTimeField(null=True, blank=True)
    claimed_from_status = models.CharField(max_length=20, blank=True, default="")

    staged_at = models.DateTimeField(default=timezone.now)
    last_synced_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        abstract = True


class StagingInvoice(SyncTrackedModel):
    TYPE_INVOICE = "ACCREC"
    TYPE_CREDIT_NOTE = "ACCRECCREDIT"

    TYPE_CHOICES = [
        (TYPE_INVOICE, "Invoice"),
        (TYPE_CREDIT_NOTE, "Credit Note"),
    ]

    STATUS_DRAFT = "DRAFT"
    STATUS_AUTHORISED = "AUTHORISED"

    INVOICE_STATUS_CHOICES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_AUTHORISED, "Authorised"),
    ]

    REASON_NEW_REGISTRATION = "new_registration"
    REASON_MEMBERSHIP = "membership"
    REASON_REFUND_PROPORTIONAL = "refund_proportional"
    REASON_REFUND_DISCOUNT_CODE = "refund_discount_code"
    REASON_CATEGORY_CHANGE = "category_change"
    REASON_FREE_PURCHASE = "free_purchase"

    REASON_CHOICES = [
        (REASON_NEW_REGISTRATION, "New Registration"),
        (REASON_MEMBERSHIP, "Membership"),
        (REASON_REFUND_PROPORTIONAL, "Proportional Refund"),
        (REASON_REFUND_DISCOUNT_CODE, "Discount Code Refund"),
        (REASON_CATEGORY_CHANGE, "Category Change"),
        (REASON_FREE_PURCHASE, "Free Purchase"),
    ]

    PURCHASE_REASONS = (REASON_NEW_REGISTRATION, REASON_MEMBERSHIP, REASON_FREE_PURCHASE)
    REFUND_REASONS = (REASON_REFUND_PROPORTIONAL, REASON_REFUND_DISCOUNT_CODE)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    invoice_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_INVOICE)
    invoice_status = models.CharField(max_length=20, choices=INVOICE_STATUS_CHOICES, default=STATUS_DRAFT)
    reason = models.CharField(max_length=40, choices=REASON_CHOICES)
    metadata = models.JSONField(default=dict, blank=True)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="staging_invoices",
    )
    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="staging_invoices",
    )
    refund = models.OneToOneField(
        "payments.Refund",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="staging_invoice",
    )

    # Money (cents)
    total_amount = models.IntegerField(default=0)
    discount_amount = models.IntegerField(default=0)
    net_amount = models.IntegerField(default=0)

    xero_invoice_id = models.CharField(max_length=64, null=True, blank=True)
    invoice_number = models.CharField(max_length=64, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "xero_invoices"
        ordering = ["staged_at"]
        indexes = [
            models.Index(fields=["sync_status", "staged_at"], name="xero_inv_status_staged_idx"),
            models.Index(fields=["sync_status", "next_attempt_at"], name="xero_inv_status_retry_idx"),
            models.Index(fields=["payment", "reason"], name="xero_inv_payment_reason_idx"),
            models.Index(fields=["tenant_id"], name="xero_inv_tenant_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "xero_invoice_id"],
                condition=Q(xero_invoice_id__isnull=False),
                name="uniq_staging_invoice_remote_id",
            ),
        ]

    @property
    def is_credit_note(self) -> bool:
        return self.invoice_type == self.TYPE_CREDIT_NOTE

    @property
    def is_zero_value(self) -> bool:
        return self.net_amount == 0

    def line_total(self) -> int:
        return int(self.line_items.aggregate(total=Sum("line_amount"))["total"] or 0)

    def is_balanced(self) -> bool:
        return self.line_total() == self.net_amount

    def __str__(self):
        return f"{self.invoice_type} {self.id} | {self.net_amount} | {self.sync_status}"


class StagingLineItem(models.Model):
    TYPE_MEMBERSHIP = "membership"
    TYPE_REGISTRATION = "registration"
    TYPE_DISCOUNT = "discount"
    TYPE_DONATION = "donation"
    TYPE_DISCOUNT_REFUND = "discount_refund"
    TYPE_REFUND = "refund"
    TYPE_CATEGORY_CHANGE = "category_change"

    TYPE_CHOICES = [
        (TYPE_MEMBERSHIP, "Membership"),
        (TYPE_REGISTRATION, "Registration"),
        (TYPE_DISCOUNT, "Discount"),
        (TYPE_DONATION, "Donation"),
        (TYPE_DISCOUNT_REFUND, "Discount Refund"),
        (TYPE_REFUND, "Refund"),
        (TYPE_CATEGORY_CHANGE, "Category Change"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(StagingInvoice, on_delete=models.CASCADE, related_name="line_items")

    line_item_type = models.CharField(max_length=30, choices=TYPE_CHOICES)
    description = models.CharField(max_length=500)
    quantity = models.PositiveIntegerField(default=1)
    unit_amount = models.IntegerField(help_text="Cents, signed")
    line_amount = models.IntegerField(help_text="Cents, signed; negative for discounts and credits")
    account_code = models.CharField(max_length=20)
    tax_type = models.CharField(max_length=20, default="NONE")

    item_id = models.CharField(max_length=64, blank=True, default="")
    discount_code = models.ForeignKey(
        "discounts.DiscountCode",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="staging_lines",
    )

    position = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "xero_invoice_line_items"
        ordering = ["invoice", "position"]

    def __str__(self):
        return f"{self.description} | {self.line_amount}"


class StagingPayment(SyncTrackedModel):
    METHOD_STRIPE = "stripe"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(StagingInvoice, on_delete=models.CASCADE, related_name="payments")

    amount_paid = models.IntegerField(help_text="Cents; negative when money goes out")
    bank_account_code = models.CharField(max_length=20)
    reference = models.CharField(max_length=255, blank=True, default="")
    payment_method = models.CharField(max_length=20, default=METHOD_STRIPE)

    xero_payment_id = models.CharField(max_length=64, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "xero_payments"
        ordering = ["staged_at"]
        indexes = [
            models.Index(fields=["sync_status", "staged_at"], name="xero_pay_status_staged_idx"),
            models.Index(fields=["sync_status", "next_attempt_at"], name="xero_pay_status_retry_idx"),
        ]

    def __str__(self):
        return f"Payment {self.id} | {self.amount_paid} | {self.sync_status}"

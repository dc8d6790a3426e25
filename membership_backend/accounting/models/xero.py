# accounting/models/xero.py

"""
======================================================
PATH: accounting/models/xero.py
======================================================
XERO CONNECTION + CACHES

- XeroConnection: one OAuth connection per tenant (organisation)
- XeroContact: member -> remote contact id cache, per tenant
- XeroAccount: chart-of-accounts cache, per tenant
- XeroSyncLog: one row per remote call (operator audit trail)
- SystemAccountingCode: codes the pipeline itself needs (bank account)
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone

# Xero refresh tokens stay valid for 60 days after the last refresh.
REFRESH_TOKEN_LIFETIME = timedelta(days=60)


class XeroConnection(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(max_length=64, unique=True)
    tenant_name = models.CharField(max_length=255, blank=True, default="")

    access_token = models.TextField(blank=True, default="")
    refresh_token = models.TextField(blank=True, default="")
    expires_at = models.DateTimeField(null=True, blank=True)
    refreshed_at = models.DateTimeField(default=timezone.now)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]

    def access_token_expired(self, *, skew_seconds: int = 60) -> bool:
        if not self.access_token or not self.expires_at:
            return True
        return self.expires_at <= timezone.now() + timedelta(seconds=skew_seconds)

    def refresh_token_expired(self) -> bool:
        return self.refreshed_at + REFRESH_TOKEN_LIFETIME <= timezone.now()

    def __str__(self):
        return f"{self.tenant_name or self.tenant_id} ({'active' if self.is_active else 'inactive'})"


class XeroContact(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="xero_contacts",
    )
    tenant_id = models.CharField(max_length=64)
    xero_contact_id = models.CharField(max_length=64)
    contact_name = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "tenant_id"], name="uniq_xero_contact_user_tenant"),
        ]

    def __str__(self):
        return f"{self.contact_name} -> {self.xero_contact_id}"


class XeroAccount(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(max_length=64)
    xero_account_id = models.CharField(max_length=64)

    code = models.CharField(max_length=20)
    name = models.CharField(max_length=255)
    account_type = models.CharField(max_length=40)
    status = models.CharField(max_length=20, default="ACTIVE")
    description = models.TextField(blank=True, default="")

    last_synced_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "xero_accounts"
        ordering = ["code"]
        indexes = [
            models.Index(fields=["tenant_id", "code"], name="xero_account_tenant_code_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "xero_account_id"],
                name="uniq_xero_account_tenant_remote_id",
            ),
            models.CheckConstraint(
                condition=~Q(code=""),
                name="chk_xero_account_code_not_blank",
            ),
        ]

    def __str__(self):
        return f"{self.code} - {self.name}"


class XeroSyncLog(models.Model):
    OP_CONTACT_SYNC = "contact_sync"
    OP_INVOICE_SYNC = "invoice_sync"
    OP_CREDIT_NOTE_SYNC = "credit_note_sync"
    OP_PAYMENT_SYNC = "payment_sync"
    OP_ACCOUNTS_SYNC = "accounts_sync"
    OP_TOKEN_REFRESH = "token_refresh"

    OPERATION_CHOICES = [
        (OP_CONTACT_SYNC, "Contact Sync"),
        (OP_INVOICE_SYNC, "Invoice Sync"),
        (OP_CREDIT_NOTE_SYNC, "Credit Note Sync"),
        (OP_PAYMENT_SYNC, "Payment Sync"),
        (OP_ACCOUNTS_SYNC, "Accounts Sync"),
        (OP_TOKEN_REFRESH, "Token Refresh"),
    ]

    STATUS_SUCCESS = "success"
    STATUS_ERROR = "error"
    STATUS_WARNING = "warning"

    STATUS_CHOICES = [
        (STATUS_SUCCESS, "Success"),
        (STATUS_ERROR, "Error"),
        (STATUS_WARNING, "Warning"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(max_length=64, blank=True, default="")
    operation_type = models.CharField(max_length=30, choices=OPERATION_CHOICES)
    record_type = models.CharField(max_length=30, blank=True, default="")
    record_id = models.CharField(max_length=64, blank=True, default="")
    xero_id = models.CharField(max_length=64, blank=True, default="")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES)
    error_message = models.TextField(blank=True, default="")
    request_data = models.JSONField(null=True, blank=True)
    response_data = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["record_type", "record_id"], name="xero_sync_log_record_idx"),
            models.Index(fields=["status", "created_at"], name="xero_sync_log_status_idx"),
        ]

    def __str__(self):
        return f"{self.operation_type} {self.record_id} | {self.status}"


class SystemAccountingCode(models.Model):
    CODE_STRIPE_BANK_ACCOUNT = "stripe_bank_account"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code_type = models.CharField(max_length=50, unique=True)
    accounting_code = models.CharField(max_length=20)
    description = models.CharField(max_length=255, blank=True, default="")

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code_type"]

    def clean(self):
        self.accounting_code = (self.accounting_code or "").strip()
        if not self.accounting_code:
            raise ValidationError("Accounting code is required")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.code_type} = {self.accounting_code}"

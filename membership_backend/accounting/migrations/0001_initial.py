# accounting/migrations/0001_initial.py

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

SYNC_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("staged", "Staged"),
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("synced", "Synced"),
    ("failed", "Failed"),
    ("ignore", "Ignore"),
]


def sync_tracked_fields():
    return [
        ("sync_status", models.CharField(choices=SYNC_STATUS_CHOICES, default="staged", max_length=20)),
        ("sync_error", models.TextField(blank=True, default="")),
        ("tenant_id", models.CharField(blank=True, max_length=64, null=True)),
        ("attempt_count", models.PositiveIntegerField(default=0)),
        ("next_attempt_at", models.DateTimeField(blank=True, null=True)),
        ("claimed_at", models.DateTimeField(blank=True, null=True)),
        ("claimed_from_status", models.CharField(blank=True, default="", max_length=20)),
        ("staged_at", models.DateTimeField(default=django.utils.timezone.now)),
        ("last_synced_at", models.DateTimeField(blank=True, null=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("payments", "0001_initial"),
        ("discounts", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="StagingInvoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                *sync_tracked_fields(),
                (
                    "invoice_type",
                    models.CharField(
                        choices=[("ACCREC", "Invoice"), ("ACCRECCREDIT", "Credit Note")],
                        default="ACCREC",
                        max_length=20,
                    ),
                ),
                (
                    "invoice_status",
                    models.CharField(
                        choices=[("DRAFT", "Draft"), ("AUTHORISED", "Authorised")],
                        default="DRAFT",
                        max_length=20,
                    ),
                ),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("new_registration", "New Registration"),
                            ("membership", "Membership"),
                            ("refund_proportional", "Proportional Refund"),
                            ("refund_discount_code", "Discount Code Refund"),
                            ("category_change", "Category Change"),
                            ("free_purchase", "Free Purchase"),
                        ],
                        max_length=40,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("total_amount", models.IntegerField(default=0)),
                ("discount_amount", models.IntegerField(default=0)),
                ("net_amount", models.IntegerField(default=0)),
                ("xero_invoice_id", models.CharField(blank=True, max_length=64, null=True)),
                ("invoice_number", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="staging_invoices",
                        to="payments.payment",
                    ),
                ),
                (
                    "refund",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="staging_invoice",
                        to="payments.refund",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="staging_invoices",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "xero_invoices",
                "ordering": ["staged_at"],
                "indexes": [
                    models.Index(fields=["sync_status", "staged_at"], name="xero_inv_status_staged_idx"),
                    models.Index(fields=["sync_status", "next_attempt_at"], name="xero_inv_status_retry_idx"),
                    models.Index(fields=["payment", "reason"], name="xero_inv_payment_reason_idx"),
                    models.Index(fields=["tenant_id"], name="xero_inv_tenant_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(xero_invoice_id__isnull=False),
                        fields=["tenant_id", "xero_invoice_id"],
                        name="uniq_staging_invoice_remote_id",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StagingLineItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "line_item_type",
                    models.CharField(
                        choices=[
                            ("membership", "Membership"),
                            ("registration", "Registration"),
                            ("discount", "Discount"),
                            ("donation", "Donation"),
                            ("discount_refund", "Discount Refund"),
                            ("refund", "Refund"),
                            ("category_change", "Category Change"),
                        ],
                        max_length=30,
                    ),
                ),
                ("description", models.CharField(max_length=500)),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("unit_amount", models.IntegerField(help_text="Cents, signed")),
                (
                    "line_amount",
                    models.IntegerField(help_text="Cents, signed; negative for discounts and credits"),
                ),
                ("account_code", models.CharField(max_length=20)),
                ("tax_type", models.CharField(default="NONE", max_length=20)),
                ("item_id", models.CharField(blank=True, default="", max_length=64)),
                ("position", models.PositiveIntegerField(default=0)),
                (
                    "discount_code",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="staging_lines",
                        to="discounts.discountcode",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="accounting.staginginvoice",
                    ),
                ),
            ],
            options={
                "db_table": "xero_invoice_line_items",
                "ordering": ["invoice", "position"],
            },
        ),
        migrations.CreateModel(
            name="StagingPayment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                *sync_tracked_fields(),
                ("amount_paid", models.IntegerField(help_text="Cents; negative when money goes out")),
                ("bank_account_code", models.CharField(max_length=20)),
                ("reference", models.CharField(blank=True, default="", max_length=255)),
                ("payment_method", models.CharField(default="stripe", max_length=20)),
                ("xero_payment_id", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payments",
                        to="accounting.staginginvoice",
                    ),
                ),
            ],
            options={
                "db_table": "xero_payments",
                "ordering": ["staged_at"],
                "indexes": [
                    models.Index(fields=["sync_status", "staged_at"], name="xero_pay_status_staged_idx"),
                    models.Index(fields=["sync_status", "next_attempt_at"], name="xero_pay_status_retry_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="XeroConnection",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(max_length=64, unique=True)),
                ("tenant_name", models.CharField(blank=True, default="", max_length=255)),
                ("access_token", models.TextField(blank=True, default="")),
                ("refresh_token", models.TextField(blank=True, default="")),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("refreshed_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["-updated_at"]},
        ),
        migrations.CreateModel(
            name="XeroContact",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(max_length=64)),
                ("xero_contact_id", models.CharField(max_length=64)),
                ("contact_name", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="xero_contacts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=["user", "tenant_id"], name="uniq_xero_contact_user_tenant"),
                ],
            },
        ),
        migrations.CreateModel(
            name="XeroAccount",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(max_length=64)),
                ("xero_account_id", models.CharField(max_length=64)),
                ("code", models.CharField(max_length=20)),
                ("name", models.CharField(max_length=255)),
                ("account_type", models.CharField(max_length=40)),
                ("status", models.CharField(default="ACTIVE", max_length=20)),
                ("description", models.TextField(blank=True, default="")),
                ("last_synced_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "xero_accounts",
                "ordering": ["code"],
                "indexes": [
                    models.Index(fields=["tenant_id", "code"], name="xero_account_tenant_code_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["tenant_id", "xero_account_id"],
                        name="uniq_xero_account_tenant_remote_id",
                    ),
                    models.CheckConstraint(
                        condition=~models.Q(code=""),
                        name="chk_xero_account_code_not_blank",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="XeroSyncLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(blank=True, default="", max_length=64)),
                (
                    "operation_type",
                    models.CharField(
                        choices=[
                            ("contact_sync", "Contact Sync"),
                            ("invoice_sync", "Invoice Sync"),
                            ("credit_note_sync", "Credit Note Sync"),
                            ("payment_sync", "Payment Sync"),
                            ("accounts_sync", "Accounts Sync"),
                            ("token_refresh", "Token Refresh"),
                        ],
                        max_length=30,
                    ),
                ),
                ("record_type", models.CharField(blank=True, default="", max_length=30)),
                ("record_id", models.CharField(blank=True, default="", max_length=64)),
                ("xero_id", models.CharField(blank=True, default="", max_length=64)),
                (
                    "status",
                    models.CharField(
                        choices=[("success", "Success"), ("error", "Error"), ("warning", "Warning")],
                        max_length=20,
                    ),
                ),
                ("error_message", models.TextField(blank=True, default="")),
                ("request_data", models.JSONField(blank=True, null=True)),
                ("response_data", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["record_type", "record_id"], name="xero_sync_log_record_idx"),
                    models.Index(fields=["status", "created_at"], name="xero_sync_log_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SystemAccountingCode",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code_type", models.CharField(max_length=50, unique=True)),
                ("accounting_code", models.CharField(max_length=20)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["code_type"]},
        ),
        migrations.CreateModel(
            name="SystemEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "event_type",
                    models.CharField(
                        choices=[("xero_sync", "Xero Sync"), ("xero_accounts_sync", "Xero Accounts Sync")],
                        max_length=40,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("running", "Running"), ("completed", "Completed"), ("failed", "Failed")],
                        default="running",
                        max_length=20,
                    ),
                ),
                ("summary", models.JSONField(blank=True, default=dict)),
                ("triggered_by", models.CharField(blank=True, default="", max_length=100)),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["event_type", "started_at"], name="system_event_type_started_idx"),
                ],
            },
        ),
    ]

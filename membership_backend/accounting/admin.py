# accounting/admin.py

from django.contrib import admin

from accounting.models import (
    StagingInvoice,
    StagingLineItem,
    StagingPayment,
    SystemAccountingCode,
    SystemEvent,
    XeroAccount,
    XeroConnection,
    XeroContact,
    XeroSyncLog,
)


# ======================================================
# STAGING
# ======================================================


class StagingLineItemInline(admin.TabularInline):
    model = StagingLineItem
    extra = 0
    can_delete = False
    readonly_fields = (
        "position",
        "line_item_type",
        "description",
        "quantity",
        "unit_amount",
        "line_amount",
        "account_code",
        "discount_code",
    )


class StagingPaymentInline(admin.TabularInline):
    model = StagingPayment
    extra = 0
    can_delete = False
    readonly_fields = ("amount_paid", "bank_account_code", "reference", "sync_status", "xero_payment_id")


@admin.register(StagingInvoice)
class StagingInvoiceAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "invoice_type",
        "reason",
        "net_amount",
        "sync_status",
        "attempt_count",
        "xero_invoice_id",
        "staged_at",
    )
    list_filter = ("sync_status", "invoice_type", "reason")
    search_fields = ("id", "xero_invoice_id", "invoice_number", "user__email")
    readonly_fields = (
        "total_amount",
        "discount_amount",
        "net_amount",
        "metadata",
        "claimed_at",
        "claimed_from_status",
        "last_synced_at",
        "created_at",
        "updated_at",
    )
    inlines = [StagingLineItemInline, StagingPaymentInline]


@admin.register(StagingPayment)
class StagingPaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "invoice", "amount_paid", "sync_status", "attempt_count", "xero_payment_id")
    list_filter = ("sync_status",)
    search_fields = ("id", "reference", "xero_payment_id")


# ======================================================
# XERO CONNECTION + CACHES
# ======================================================


@admin.register(XeroConnection)
class XeroConnectionAdmin(admin.ModelAdmin):
    list_display = ("tenant_name", "tenant_id", "is_active", "expires_at", "refreshed_at")
    exclude = ("access_token", "refresh_token")


@admin.register(XeroContact)
class XeroContactAdmin(admin.ModelAdmin):
    list_display = ("contact_name", "user", "tenant_id", "xero_contact_id")
    search_fields = ("contact_name", "user__email", "xero_contact_id")


@admin.register(XeroAccount)
class XeroAccountAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "account_type", "status", "tenant_id", "last_synced_at")
    list_filter = ("account_type", "tenant_id")
    search_fields = ("code", "name")


@admin.register(XeroSyncLog)
class XeroSyncLogAdmin(admin.ModelAdmin):
    list_display = ("operation_type", "record_type", "record_id", "status", "created_at")
    list_filter = ("operation_type", "status")
    search_fields = ("record_id", "xero_id", "error_message")
    readonly_fields = ("request_data", "response_data", "error_message")


@admin.register(SystemAccountingCode)
class SystemAccountingCodeAdmin(admin.ModelAdmin):
    list_display = ("code_type", "accounting_code", "description", "updated_at")


@admin.register(SystemEvent)
class SystemEventAdmin(admin.ModelAdmin):
    list_display = ("event_type", "status", "triggered_by", "started_at", "completed_at")
    list_filter = ("event_type", "status")
    readonly_fields = ("summary",)

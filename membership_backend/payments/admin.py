# payments/admin.py

from django.contrib import admin

from payments.models import Payment, Refund


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "final_amount",
        "discount_amount",
        "status",
        "payment_method",
        "created_at",
    )
    readonly_fields = (
        "stripe_payment_intent_id",
        "stripe_charge_id",
        "metadata",
        "created_at",
        "updated_at",
        "completed_at",
    )
    search_fields = ("id", "stripe_payment_intent_id", "user__email")
    list_filter = ("status", "payment_method", "created_at")


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "payment",
        "amount",
        "refund_type",
        "status",
        "processed_by",
        "created_at",
    )
    readonly_fields = (
        "payment",
        "amount",
        "refund_type",
        "discount_code",
        "stripe_refund_id",
        "failure_reason",
        "processed_by",
        "created_at",
        "completed_at",
    )
    search_fields = ("id", "stripe_refund_id", "payment__stripe_payment_intent_id")
    list_filter = ("status", "refund_type")

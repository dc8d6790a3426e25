# accounting/api/serializers/xero.py

from rest_framework import serializers

from accounting.models import StagingInvoice, StagingLineItem, StagingPayment, SystemEvent, XeroAccount


class XeroAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = XeroAccount
        fields = ("id", "xero_account_id", "code", "name", "account_type", "status", "description", "last_synced_at")
        read_only_fields = fields


class StagingLineItemSerializer(serializers.ModelSerializer):
    discount_code = serializers.SlugRelatedField(slug_field="code", read_only=True)

    class Meta:
        model = StagingLineItem
        fields = (
            "id",
            "line_item_type",
            "description",
            "quantity",
            "unit_amount",
            "line_amount",
            "account_code",
            "tax_type",
            "item_id",
            "discount_code",
            "position",
        )
        read_only_fields = fields


class StagingPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = StagingPayment
        fields = (
            "id",
            "amount_paid",
            "bank_account_code",
            "reference",
            "sync_status",
            "sync_error",
            "attempt_count",
            "next_attempt_at",
            "xero_payment_id",
            "last_synced_at",
        )
        read_only_fields = fields


class StagingInvoiceSerializer(serializers.ModelSerializer):
    """
    One staged invoice / credit note with its lines and payment applications.
    Amounts are cents.
    """

    line_items = StagingLineItemSerializer(many=True, read_only=True)
    payments = StagingPaymentSerializer(many=True, read_only=True)
    user_email = serializers.EmailField(source="user.email", read_only=True)

    class Meta:
        model = StagingInvoice
        fields = (
            "id",
            "invoice_type",
            "invoice_status",
            "reason",
            "user",
            "user_email",
            "payment",
            "refund",
            "total_amount",
            "discount_amount",
            "net_amount",
            "sync_status",
            "sync_error",
            "tenant_id",
            "attempt_count",
            "next_attempt_at",
            "xero_invoice_id",
            "invoice_number",
            "metadata",
            "staged_at",
            "last_synced_at",
            "line_items",
            "payments",
        )
        read_only_fields = fields


class SystemEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = SystemEvent
        fields = ("id", "event_type", "status", "summary", "triggered_by", "started_at", "completed_at")
        read_only_fields = fields


class SyncRequestSerializer(serializers.Serializer):
    tenant_id = serializers.CharField(required=False, allow_blank=True, default="")
    batch_size = serializers.IntegerField(required=False, min_value=1, max_value=500)


class AccountsSyncRequestSerializer(serializers.Serializer):
    tenant_id = serializers.CharField(required=False, allow_blank=True, default="")


class RetryRequestSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.UUIDField(), required=False, allow_empty=True)

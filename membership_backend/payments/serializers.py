# payments/serializers.py

from rest_framework import serializers

from payments.models import Payment, Refund

# ---------------------------
# COMMANDS
# ---------------------------


class RefundPreviewSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField()
    refund_type = serializers.ChoiceField(choices=Refund.TYPE_CHOICES)
    amount = serializers.IntegerField(required=False, min_value=0, help_text="Cents (proportional refunds)")
    discount_code = serializers.CharField(required=False, allow_blank=False)

    def validate(self, attrs):
        if attrs["refund_type"] == Refund.TYPE_PROPORTIONAL and "amount" not in attrs:
            raise serializers.ValidationError({"amount": "Required for proportional refunds."})
        if attrs["refund_type"] == Refund.TYPE_DISCOUNT_CODE and not attrs.get("discount_code"):
            raise serializers.ValidationError({"discount_code": "Required for discount code refunds."})
        return attrs


class RefundStageSerializer(RefundPreviewSerializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RefundConfirmSerializer(serializers.Serializer):
    refund_id = serializers.UUIDField()
    reason = serializers.CharField(required=False, allow_blank=True)


class RefundCancelSerializer(serializers.Serializer):
    refund_id = serializers.UUIDField()


# ---------------------------
# READ
# ---------------------------


class RefundSerializer(serializers.ModelSerializer):
    staging_invoice_id = serializers.SerializerMethodField()
    discount_code = serializers.SlugRelatedField(slug_field="code", read_only=True)

    class Meta:
        model = Refund
        fields = (
            "id",
            "payment",
            "user",
            "amount",
            "refund_type",
            "reason",
            "status",
            "discount_code",
            "stripe_refund_id",
            "failure_reason",
            "processed_by",
            "staging_invoice_id",
            "created_at",
            "completed_at",
        )
        read_only_fields = fields

    def get_staging_invoice_id(self, obj):
        staging = getattr(obj, "staging_invoice", None)
        return str(staging.id) if staging else None


class PaymentSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = (
            "id",
            "total_amount",
            "discount_amount",
            "final_amount",
            "status",
            "payment_method",
            "stripe_payment_intent_id",
            "completed_at",
        )
        read_only_fields = fields

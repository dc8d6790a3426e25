# registrations/serializers.py

from rest_framework import serializers

from payments.services.checkout import MAX_MEMBERSHIP_MONTHS


class CategoryChangeSerializer(serializers.Serializer):
    user_registration_id = serializers.UUIDField()
    new_category_id = serializers.UUIDField()
    reason = serializers.CharField(allow_blank=False, max_length=1000)


class RegistrationCheckoutSerializer(serializers.Serializer):
    category_id = serializers.UUIDField()
    discount_code = serializers.CharField(required=False, allow_blank=True, default="")


class MembershipCheckoutSerializer(serializers.Serializer):
    membership_id = serializers.UUIDField()
    months = serializers.IntegerField(min_value=1, max_value=MAX_MEMBERSHIP_MONTHS)

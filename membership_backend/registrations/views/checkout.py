# registrations/views/checkout.py

from __future__ import annotations

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounting.services.exceptions import MissingAccountingCodeError
from backend.api_errors import error_response
from payments.services.checkout import start_membership_checkout, start_registration_checkout
from payments.services.exceptions import CheckoutError
from registrations.models import Membership, RegistrationCategory
from registrations.serializers import MembershipCheckoutSerializer, RegistrationCheckoutSerializer


def _checkout_response(result: dict):
    code = status.HTTP_201_CREATED if result.get("status") == "completed" else status.HTTP_200_OK
    return Response(result, status=code)


class RegistrationCheckoutView(APIView):
    """
    Member checkout for one registration category.
    Returns the Stripe client secret, or status=completed for free entries.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["checkout"], request=RegistrationCheckoutSerializer, responses={200: dict, 201: dict})
    def post(self, request):
        serializer = RegistrationCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        category = get_object_or_404(
            RegistrationCategory.objects.select_related("registration"),
            pk=data["category_id"],
            registration__is_active=True,
        )
        try:
            result = start_registration_checkout(
                user=request.user,
                category=category,
                discount_code=data.get("discount_code") or None,
            )
        except (CheckoutError, MissingAccountingCodeError) as exc:
            return error_response(code="CHECKOUT_FAILED", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)

        return _checkout_response(result)


class MembershipCheckoutView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["checkout"], request=MembershipCheckoutSerializer, responses={200: dict, 201: dict})
    def post(self, request):
        serializer = MembershipCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        membership = get_object_or_404(Membership, pk=serializer.validated_data["membership_id"])
        try:
            result = start_membership_checkout(
                user=request.user,
                membership=membership,
                months=serializer.validated_data["months"],
            )
        except (CheckoutError, MissingAccountingCodeError) as exc:
            return error_response(code="CHECKOUT_FAILED", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)

        return _checkout_response(result)

# payments/views/refunds.py

"""
PATH: payments/views/refunds.py

ADMIN REFUND ENDPOINTS

POST /api/payments/refunds/preview/   -> numbers + credit-note lines (no writes)
POST /api/payments/refunds/stage/     -> Refund(staged) + credit-note staging
POST /api/payments/refunds/confirm/   -> Stripe refund
POST /api/payments/refunds/cancel/    -> staged refund -> ignore
GET  /api/payments/refunds/           -> filterable list

All require refunds.manage.
"""

from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounting.services.exceptions import MissingAccountingCodeError, StagingError
from backend.api_errors import error_response
from payments.filters import RefundFilter
from payments.models import Payment, Refund
from payments.serializers import (
    RefundCancelSerializer,
    RefundConfirmSerializer,
    RefundPreviewSerializer,
    RefundSerializer,
    RefundStageSerializer,
)
from payments.services import refund_service
from payments.services.exceptions import (
    PaymentGatewayError,
    RefundAmountError,
    RefundError,
    RefundNotAllowedError,
    RefundStateError,
)
from permissions.roles import CAP_REFUNDS_MANAGE, HasCapability

logger = logging.getLogger(__name__)


def refund_error_response(exc: Exception):
    if isinstance(exc, RefundNotAllowedError):
        return error_response(code="REFUND_NOT_ALLOWED", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, RefundAmountError):
        return error_response(code="INVALID_REFUND_AMOUNT", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, RefundStateError):
        return error_response(code="INVALID_REFUND_STATE", message=str(exc), http_status=status.HTTP_409_CONFLICT)
    if isinstance(exc, PaymentGatewayError):
        return error_response(code="PAYMENT_GATEWAY_ERROR", message=str(exc), http_status=status.HTTP_502_BAD_GATEWAY)
    if isinstance(exc, MissingAccountingCodeError):
        return error_response(code="ACCOUNTING_CODE_MISSING", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, StagingError):
        return error_response(code="STAGING_FAILED", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    return error_response(code="REFUND_FAILED", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)


HANDLED = (RefundError, PaymentGatewayError, StagingError)


class RefundAdminMixin:
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_REFUNDS_MANAGE


class RefundPreviewView(RefundAdminMixin, APIView):
    @extend_schema(tags=["refunds"], request=RefundPreviewSerializer, responses={200: dict})
    def post(self, request):
        serializer = RefundPreviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = get_object_or_404(Payment, pk=data["payment_id"])
        try:
            preview = refund_service.preview_refund(
                payment=payment,
                refund_type=data["refund_type"],
                amount=data.get("amount"),
                discount_code=data.get("discount_code"),
            )
        except HANDLED as exc:
            return refund_error_response(exc)

        return Response(preview, status=status.HTTP_200_OK)


class RefundStageView(RefundAdminMixin, APIView):
    @extend_schema(tags=["refunds"], request=RefundStageSerializer, responses={201: RefundSerializer})
    def post(self, request):
        serializer = RefundStageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = get_object_or_404(Payment, pk=data["payment_id"])
        try:
            refund = refund_service.stage_refund(
                payment=payment,
                refund_type=data["refund_type"],
                user=request.user,
                amount=data.get("amount"),
                discount_code=data.get("discount_code"),
                reason=data.get("reason", ""),
            )
        except HANDLED as exc:
            return refund_error_response(exc)

        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


class RefundConfirmView(RefundAdminMixin, APIView):
    @extend_schema(tags=["refunds"], request=RefundConfirmSerializer, responses={200: RefundSerializer})
    def post(self, request):
        serializer = RefundConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        refund = get_object_or_404(Refund, pk=serializer.validated_data["refund_id"])
        try:
            refund = refund_service.confirm_refund(
                refund=refund,
                user=request.user,
                reason=serializer.validated_data.get("reason"),
            )
        except HANDLED as exc:
            return refund_error_response(exc)
        except Exception:
            logger.exception("Unexpected refund confirmation error", extra={"refund_id": str(refund.id)})
            return error_response(
                code="INTERNAL_ERROR",
                message="Refund could not be processed",
                http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(RefundSerializer(refund).data, status=status.HTTP_200_OK)


class RefundCancelView(RefundAdminMixin, APIView):
    @extend_schema(tags=["refunds"], request=RefundCancelSerializer, responses={200: RefundSerializer})
    def post(self, request):
        serializer = RefundCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        refund = get_object_or_404(Refund, pk=serializer.validated_data["refund_id"])
        try:
            refund = refund_service.cancel_refund(refund=refund, user=request.user)
        except HANDLED as exc:
            return refund_error_response(exc)

        return Response(RefundSerializer(refund).data, status=status.HTTP_200_OK)


class RefundListView(RefundAdminMixin, generics.ListAPIView):
    serializer_class = RefundSerializer
    filterset_class = RefundFilter
    queryset = Refund.objects.select_related("payment", "discount_code", "staging_invoice").order_by("-created_at")

    @extend_schema(tags=["refunds"])
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

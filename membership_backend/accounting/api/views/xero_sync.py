# accounting/api/views/xero_sync.py

"""
PATH: accounting/api/views/xero_sync.py

MANUAL XERO SYNC (ADMIN)

POST /api/accounting/xero/sync/            -> one orchestrator run
POST /api/accounting/xero/sync-accounts/   -> refresh chart-of-accounts cache
POST /api/accounting/xero/staging/retry/   -> re-queue failed rows

Sync failures are reported in the body (the run itself still happened):
- manual sync: HTTP 200 with summary, or 503 when no tenant is connected
- accounts sync: HTTP 200 on success, 502 when Xero refused
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import UserRateThrottle
from rest_framework.views import APIView

from accounting.api.serializers.xero import (
    AccountsSyncRequestSerializer,
    RetryRequestSerializer,
    SyncRequestSerializer,
)
from accounting.services.accounts_sync import sync_accounts
from accounting.services.exceptions import XeroConnectionError
from accounting.services.sync_orchestrator import reset_failed, run_sync
from accounting.services.tenant import resolve_tenant
from backend.api_errors import error_response
from permissions.roles import CAP_ACCOUNTING_SYNC, HasCapability

logger = logging.getLogger(__name__)


class AdminSyncThrottle(UserRateThrottle):
    scope = "admin_sync"


def _triggered_by(request) -> str:
    return f"user:{request.user.pk}"


class XeroSyncView(APIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_ACCOUNTING_SYNC
    throttle_classes = [AdminSyncThrottle]

    @extend_schema(tags=["accounting"], request=SyncRequestSerializer, responses={200: dict, 503: dict})
    def post(self, request):
        serializer = SyncRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        summary = run_sync(
            tenant=data.get("tenant_id") or None,
            batch_size=data.get("batch_size"),
            triggered_by=_triggered_by(request),
        )
        if summary.error:
            return error_response(
                code="XERO_NOT_CONNECTED",
                message=summary.error,
                http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return Response(summary.as_dict(), status=status.HTTP_200_OK)


class XeroAccountsSyncView(APIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_ACCOUNTING_SYNC
    throttle_classes = [AdminSyncThrottle]

    @extend_schema(tags=["accounting"], request=AccountsSyncRequestSerializer, responses={200: dict, 502: dict})
    def post(self, request):
        serializer = AccountsSyncRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            ctx = resolve_tenant(serializer.validated_data.get("tenant_id") or None)
        except XeroConnectionError as exc:
            return error_response(
                code="XERO_NOT_CONNECTED",
                message=str(exc),
                http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        result = sync_accounts(ctx, triggered_by=_triggered_by(request))
        if not result.success:
            return Response(result.as_dict(), status=status.HTTP_502_BAD_GATEWAY)
        return Response(result.as_dict(), status=status.HTTP_200_OK)


class StagingRetryView(APIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_ACCOUNTING_SYNC

    @extend_schema(tags=["accounting"], request=RetryRequestSerializer, responses={200: dict})
    def post(self, request):
        serializer = RetryRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reset = reset_failed(ids=serializer.validated_data.get("ids") or None)
        logger.info("Staging retry requested", extra={"user_id": str(request.user.pk), **reset})
        return Response({"reset": reset}, status=status.HTTP_200_OK)

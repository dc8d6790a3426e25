# accounting/api/views/xero_read.py

"""
PATH: accounting/api/views/xero_read.py

READ-ONLY XERO DASHBOARD (accounting.view)

GET /api/accounting/xero/accounts/   -> cached chart of accounts + last sync info
GET /api/accounting/xero/staging/    -> staging invoices (filterable, paginated)
GET /api/accounting/xero/status/     -> counts per sync status + recent runs
"""

from __future__ import annotations

from django.db.models import Prefetch
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounting.api.filters import StagingInvoiceFilter
from accounting.api.serializers.xero import (
    StagingInvoiceSerializer,
    SystemEventSerializer,
    XeroAccountSerializer,
)
from accounting.models import StagingInvoice, StagingLineItem, SystemEvent, XeroAccount
from accounting.services.accounts_sync import last_sync_info
from accounting.services.exceptions import XeroConnectionError
from accounting.services.sync_orchestrator import eligible_counts, pending_counts
from accounting.services.tenant import resolve_tenant
from permissions.roles import CAP_ACCOUNTING_VIEW, HasCapability

RECENT_EVENTS = 10


class XeroAccountsView(APIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_ACCOUNTING_VIEW

    @extend_schema(
        tags=["accounting"],
        parameters=[OpenApiParameter("tenant_id", str, required=False)],
        responses={200: dict},
    )
    def get(self, request):
        tenant_id = (request.query_params.get("tenant_id") or "").strip()
        if not tenant_id:
            try:
                tenant_id = resolve_tenant().tenant_id
            except XeroConnectionError:
                return Response({"tenant_id": None, "accounts": [], "last_sync": None}, status=status.HTTP_200_OK)

        qs = XeroAccount.objects.filter(tenant_id=tenant_id).order_by("code")
        account_type = request.query_params.get("account_type")
        if account_type:
            qs = qs.filter(account_type=account_type)

        return Response(
            {
                "tenant_id": tenant_id,
                "accounts": XeroAccountSerializer(qs, many=True).data,
                "last_sync": last_sync_info(tenant_id),
            },
            status=status.HTTP_200_OK,
        )


class StagingInvoiceListView(generics.ListAPIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_ACCOUNTING_VIEW
    serializer_class = StagingInvoiceSerializer
    filterset_class = StagingInvoiceFilter

    def get_queryset(self):
        return (
            StagingInvoice.objects.select_related("user")
            .prefetch_related(
                Prefetch("line_items", queryset=StagingLineItem.objects.select_related("discount_code")),
                "payments",
            )
            .order_by("-staged_at")
        )

    @extend_schema(tags=["accounting"])
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class XeroStatusView(APIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_ACCOUNTING_VIEW

    @extend_schema(tags=["accounting"], responses={200: dict})
    def get(self, request):
        events = SystemEvent.objects.order_by("-started_at")[:RECENT_EVENTS]
        return Response(
            {
                "counts": pending_counts(),
                "eligible": eligible_counts(),
                "recent_events": SystemEventSerializer(events, many=True).data,
            },
            status=status.HTTP_200_OK,
        )

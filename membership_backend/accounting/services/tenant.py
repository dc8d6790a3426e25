# accounting/services/tenant.py

"""
TENANT CONTEXT

Every Xero call is scoped by an explicit TenantContext. There is no global
"active tenant": callers resolve one and pass it down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from accounting.models import XeroConnection
from accounting.services.exceptions import XeroConnectionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str
    tenant_name: str = ""


def resolve_tenant(tenant_id: Optional[str] = None) -> TenantContext:
    """
    Pick the requested tenant, else the configured default, else the most
    recently updated active connection.
    """
    requested = (tenant_id or "").strip() or settings.XERO.get("DEFAULT_TENANT_ID") or ""

    qs = XeroConnection.objects.filter(is_active=True)
    connection = qs.filter(tenant_id=requested).first() if requested else qs.order_by("-updated_at").first()

    if not connection:
        if requested:
            raise XeroConnectionError(f"Xero tenant {requested} is not connected")
        raise XeroConnectionError("No active Xero connection")

    if connection.refresh_token_expired():
        logger.warning("Xero refresh token expired", extra={"tenant_id": connection.tenant_id})
        raise XeroConnectionError(
            f"Xero connection for {connection.tenant_name or connection.tenant_id} has expired; reconnect required"
        )

    return TenantContext(tenant_id=connection.tenant_id, tenant_name=connection.tenant_name)

# accounting/services/xero_client.py

"""
XERO HTTP CLIENT

Thin authenticated wrapper over the Xero accounting REST API:
- one requests.Session per client, scoped to a single tenant
- refreshes the OAuth access token when it is about to expire
- turns non-2xx responses into XeroApiError with Xero's own messages
  (Elements[].ValidationErrors[].Message, Message, Detail)

Business mapping (invoices, contacts, payments) lives in xero_adapter.py.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

import requests
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounting.models import XeroConnection, XeroSyncLog
from accounting.services.exceptions import XeroApiError, XeroAuthError, XeroConnectionError
from accounting.services.tenant import TenantContext

logger = logging.getLogger(__name__)


def extract_error_messages(payload: Any) -> list[str]:
    """Collect every human readable error Xero put in a response body."""
    if not isinstance(payload, dict):
        return []

    messages: list[str] = []
    for element in payload.get("Elements") or []:
        for err in (element or {}).get("ValidationErrors") or []:
            msg = (err or {}).get("Message")
            if msg:
                messages.append(str(msg))

    for key in ("Message", "Detail", "detail", "title"):
        value = payload.get(key)
        if value and str(value) not in messages:
            messages.append(str(value))
    return messages


def _json_or_text(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"Message": (response.text or "")[:500]}


class XeroClient:
    def __init__(self, ctx: TenantContext, *, session: Optional[requests.Session] = None):
        self.ctx = ctx
        self.session = session or requests.Session()
        self.base_url = settings.XERO["API_BASE_URL"]
        self.timeout = settings.XERO["REQUEST_TIMEOUT"]

    # ---------------- auth ----------------

    def _connection(self) -> XeroConnection:
        connection = XeroConnection.objects.filter(tenant_id=self.ctx.tenant_id, is_active=True).first()
        if not connection:
            raise XeroConnectionError(f"Xero tenant {self.ctx.tenant_id} is not connected")
        return connection

    def access_token(self) -> str:
        connection = self._connection()
        if not connection.access_token_expired():
            return connection.access_token
        return self.refresh_tokens(connection)

    def refresh_tokens(self, connection: XeroConnection) -> str:
        with transaction.atomic():
            connection = XeroConnection.objects.select_for_update().get(pk=connection.pk)
            if not connection.access_token_expired():
                return connection.access_token

            revoked = self._exchange_refresh_token(connection)
            if not revoked:
                return connection.access_token

        # Committed before raising.
        self._deactivate(connection, revoked)
        raise XeroAuthError(f"Xero connection deactivated ({revoked}); reconnect required")

    def _exchange_refresh_token(self, connection: XeroConnection) -> str:
        """Store fresh tokens on the locked row. Returns why the grant is dead, or ""."""
        if connection.refresh_token_expired() or not connection.refresh_token:
            return "Refresh token expired"

        try:
            response = self.session.post(
                settings.XERO["TOKEN_URL"],
                data={"grant_type": "refresh_token", "refresh_token": connection.refresh_token},
                auth=(settings.XERO["CLIENT_ID"], settings.XERO["CLIENT_SECRET"]),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Xero token refresh request failed", extra={"tenant_id": connection.tenant_id})
            raise XeroConnectionError(f"Xero token refresh failed: {exc}") from exc

        payload = _json_or_text(response)
        if response.status_code >= 400:
            error = payload.get("error") if isinstance(payload, dict) else ""
            if error == "invalid_grant":
                return "invalid_grant"
            raise XeroConnectionError(f"Xero token refresh failed: HTTP {response.status_code} {error or ''}".strip())

        now = timezone.now()
        connection.access_token = payload["access_token"]
        connection.refresh_token = payload.get("refresh_token") or connection.refresh_token
        connection.expires_at = now + timedelta(seconds=int(payload.get("expires_in") or 1800))
        connection.refreshed_at = now
        connection.save(update_fields=["access_token", "refresh_token", "expires_at", "refreshed_at", "updated_at"])

        XeroSyncLog.objects.create(
            tenant_id=connection.tenant_id,
            operation_type=XeroSyncLog.OP_TOKEN_REFRESH,
            status=XeroSyncLog.STATUS_SUCCESS,
        )
        return ""

    def _deactivate(self, connection: XeroConnection, why: str) -> None:
        logger.warning("Deactivating Xero connection", extra={"tenant_id": connection.tenant_id, "reason": why})
        connection.is_active = False
        connection.save(update_fields=["is_active", "updated_at"])
        XeroSyncLog.objects.create(
            tenant_id=connection.tenant_id,
            operation_type=XeroSyncLog.OP_TOKEN_REFRESH,
            status=XeroSyncLog.STATUS_ERROR,
            error_message=why,
        )

    # ---------------- requests ----------------

    def request(self, method: str, path: str, *, json: Any = None, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.access_token()}",
            "Xero-tenant-id": self.ctx.tenant_id,
            "Accept": "application/json",
        }

        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Xero %s %s failed: %s", method, path, exc)
            raise XeroApiError(f"Xero request failed: {exc}") from exc

        if response.status_code >= 400:
            payload = _json_or_text(response)
            messages = extract_error_messages(payload)
            if response.status_code == 429 and not messages:
                messages = ["Rate limit exceeded (429 Too Many Requests)"]
            message = "; ".join(messages) or f"HTTP {response.status_code}"
            logger.error(
                "Xero %s %s failed: %s %s",
                method,
                path,
                response.status_code,
                message[:500],
            )
            raise XeroApiError(
                message,
                status_code=response.status_code,
                validation_errors=messages,
                response=payload,
            )

        return response.json() if response.content else {}

    def get(self, path: str, *, params: Optional[dict] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, payload: dict) -> Any:
        return self.request("POST", path, json=payload)

    def put(self, path: str, payload: dict) -> Any:
        return self.request("PUT", path, json=payload)

# accounting/services/accounts_sync.py

"""
CHART OF ACCOUNTS SYNC

Mirrors the tenant's ACTIVE Xero accounts into XeroAccount:
- upsert by remote AccountID (update only when code/name/type changed)
- delete local rows that are no longer active remotely

Running twice with no remote change reports 0 added / 0 updated / 0 removed.
Remote failures are reported in the result, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from accounting.models import SystemEvent, XeroAccount, XeroSyncLog
from accounting.services import xero_adapter
from accounting.services.exceptions import AccountingServiceError
from accounting.services.tenant import TenantContext

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "ACTIVE"


@dataclass(frozen=True)
class AccountsSyncResult:
    success: bool
    total_accounts: int = 0
    added: int = 0
    updated: int = 0
    removed: int = 0
    last_synced_at: Optional[datetime] = None
    error: str = ""

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "total_accounts": self.total_accounts,
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "error": self.error,
        }


def _active_remote(accounts: list[dict]) -> dict[str, dict]:
    active = {}
    for acc in accounts:
        if acc.get("Status") != STATUS_ACTIVE:
            continue
        if not acc.get("AccountID") or not (acc.get("Code") or "").strip() or not acc.get("Name"):
            continue
        active[acc["AccountID"]] = acc
    return active


@transaction.atomic
def _apply(ctx: TenantContext, remote: dict[str, dict], now) -> tuple[int, int, int]:
    local = {row.xero_account_id: row for row in XeroAccount.objects.select_for_update().filter(tenant_id=ctx.tenant_id)}

    added = updated = 0
    for remote_id, acc in remote.items():
        code = acc["Code"].strip()
        name = acc["Name"]
        account_type = acc.get("Type") or ""
        row = local.get(remote_id)

        if row is None:
            XeroAccount.objects.create(
                tenant_id=ctx.tenant_id,
                xero_account_id=remote_id,
                code=code,
                name=name,
                account_type=account_type,
                status=STATUS_ACTIVE,
                description=acc.get("Description") or "",
                last_synced_at=now,
            )
            added += 1
            continue

        changed = (row.code, row.name, row.account_type) != (code, name, account_type)
        if changed:
            row.code = code
            row.name = name
            row.account_type = account_type
            row.description = acc.get("Description") or ""
            updated += 1
        row.last_synced_at = now
        row.save()

    stale = [remote_id for remote_id in local if remote_id not in remote]
    removed = 0
    if stale:
        removed, _ = XeroAccount.objects.filter(tenant_id=ctx.tenant_id, xero_account_id__in=stale).delete()

    return added, updated, removed


def sync_accounts(ctx: TenantContext, *, triggered_by: str = "manual") -> AccountsSyncResult:
    event = SystemEvent.objects.create(event_type=SystemEvent.EVENT_XERO_ACCOUNTS_SYNC, triggered_by=triggered_by)

    try:
        accounts = xero_adapter.fetch_accounts(ctx)
    except AccountingServiceError as exc:
        logger.error("Xero accounts fetch failed", extra={"tenant_id": ctx.tenant_id, "error": str(exc)})
        result = AccountsSyncResult(success=False, error=str(exc))
        event.finish(status=SystemEvent.STATUS_FAILED, summary=result.as_dict())
        return result

    now = timezone.now()
    remote = _active_remote(accounts)
    added, updated, removed = _apply(ctx, remote, now)

    result = AccountsSyncResult(
        success=True,
        total_accounts=len(remote),
        added=added,
        updated=updated,
        removed=removed,
        last_synced_at=now,
    )

    XeroSyncLog.objects.create(
        tenant_id=ctx.tenant_id,
        operation_type=XeroSyncLog.OP_ACCOUNTS_SYNC,
        status=XeroSyncLog.STATUS_SUCCESS,
        record_type="accounts",
        response_data=result.as_dict(),
    )
    event.finish(status=SystemEvent.STATUS_COMPLETED, summary=result.as_dict())

    logger.info(
        "Xero accounts synced",
        extra={"tenant_id": ctx.tenant_id, "added": added, "updated": updated, "removed": removed},
    )
    return result


def last_sync_info(tenant_id: str) -> Optional[dict]:
    qs = XeroAccount.objects.filter(tenant_id=tenant_id)
    info = qs.aggregate(last_synced_at=Max("last_synced_at"))
    if info["last_synced_at"] is None:
        return None
    return {"last_synced_at": info["last_synced_at"], "total_accounts": qs.count()}

# accounting/services/sync_orchestrator.py

"""
======================================================
PATH: accounting/services/sync_orchestrator.py
======================================================
SYNC ORCHESTRATOR

Pushes ready staging rows to Xero, one at a time, invoices before payments.

Selection (per model):
- pending
- failed AND next_attempt_at <= now
- staged whose source has cleared (zero-net, completed purchase payment,
  completed refund); recovers a missed webhook promotion
- payments only once their invoice carries a remote id

Claiming:
- select_for_update(skip_locked=True) + flip to `processing` with claimed_at,
  so two overlapping runs never submit the same row
- processing rows older than LEASE_MINUTES go back to their previous status
  at the start of the next run

Outcomes:
- success      -> synced (+ remote id, AUTHORISED, last_synced_at)
- failure      -> failed, attempt_count += 1, exponential next_attempt_at;
                  parked (next_attempt_at NULL) after MAX_ATTEMPTS
- rate limited -> previous status, no attempt counted, run stops early
- precondition -> previous status (skipped)
One failure never aborts the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from accounting.models import StagingInvoice, StagingPayment, SystemEvent
from accounting.services import xero_adapter
from accounting.services.exceptions import AccountingServiceError, XeroApiError, XeroConnectionError
from accounting.services.tenant import TenantContext, resolve_tenant
from payments.models import Payment, Refund

logger = logging.getLogger(__name__)

OUTCOME_SYNCED = "synced"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_RATE_LIMITED = "rate_limited"

CLEARED_PAYMENT_STATUSES = (Payment.STATUS_COMPLETED, Payment.STATUS_REFUNDED)


@dataclass
class SyncCounts:
    synced: int = 0
    failed: int = 0
    skipped: int = 0

    def add(self, outcome: str) -> None:
        if outcome == OUTCOME_SYNCED:
            self.synced += 1
        elif outcome == OUTCOME_FAILED:
            self.failed += 1
        else:
            self.skipped += 1

    def as_dict(self) -> dict:
        return {"synced": self.synced, "failed": self.failed, "skipped": self.skipped}


@dataclass
class SyncSummary:
    invoices: SyncCounts = field(default_factory=SyncCounts)
    payments: SyncCounts = field(default_factory=SyncCounts)
    tenant_id: str = ""
    released: int = 0
    rate_limited: bool = False
    error: str = ""
    event_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error

    def as_dict(self) -> dict:
        return {
            "invoices": self.invoices.as_dict(),
            "payments": self.payments.as_dict(),
            "tenant_id": self.tenant_id,
            "released": self.released,
            "rate_limited": self.rate_limited,
            "error": self.error,
            "event_id": self.event_id,
        }


# ------------------------------------------------------------
# Selection
# ------------------------------------------------------------


def _sync_conf(key: str) -> int:
    return int(settings.XERO_SYNC[key])


def _tenant_q(tenant_id: Optional[str]) -> Q:
    if not tenant_id:
        return Q()
    return Q(tenant_id=tenant_id) | Q(tenant_id__isnull=True)


def _due_q(now) -> Q:
    return Q(sync_status=StagingInvoice.SYNC_PENDING) | Q(
        sync_status=StagingInvoice.SYNC_FAILED,
        next_attempt_at__lte=now,
    )


def eligible_invoices(*, now=None, tenant_id: Optional[str] = None):
    now = now or timezone.now()
    cleared = (
        Q(net_amount=0)
        | Q(invoice_type=StagingInvoice.TYPE_INVOICE, payment__status__in=CLEARED_PAYMENT_STATUSES)
        | Q(invoice_type=StagingInvoice.TYPE_CREDIT_NOTE, refund__status=Refund.STATUS_COMPLETED)
    )
    return (
        StagingInvoice.objects.filter(_due_q(now) | (Q(sync_status=StagingInvoice.SYNC_STAGED) & cleared))
        .filter(_tenant_q(tenant_id))
        .order_by("staged_at")
    )


def eligible_payments(*, now=None, tenant_id: Optional[str] = None):
    now = now or timezone.now()
    source_cleared = Q(
        invoice__invoice_type=StagingInvoice.TYPE_INVOICE,
        invoice__payment__status__in=CLEARED_PAYMENT_STATUSES,
    ) & ~Q(invoice__payment__payment_method=Payment.METHOD_FREE) | Q(
        invoice__invoice_type=StagingInvoice.TYPE_CREDIT_NOTE,
        invoice__refund__status=Refund.STATUS_COMPLETED,
    )
    return (
        StagingPayment.objects.filter(_due_q(now) | Q(sync_status=StagingPayment.SYNC_STAGED))
        .filter(source_cleared, invoice__xero_invoice_id__isnull=False)
        .filter(_tenant_q(tenant_id))
        .order_by("staged_at")
    )


def eligible_counts(*, tenant_id: Optional[str] = None) -> dict:
    now = timezone.now()
    return {
        "invoices": eligible_invoices(now=now, tenant_id=tenant_id).count(),
        "payments": eligible_payments(now=now, tenant_id=tenant_id).count(),
    }


# ------------------------------------------------------------
# Claiming
# ------------------------------------------------------------


def release_expired_claims(*, now=None) -> int:
    now = now or timezone.now()
    cutoff = now - timedelta(minutes=_sync_conf("LEASE_MINUTES"))
    released = 0

    for model in (StagingInvoice, StagingPayment):
        with transaction.atomic():
            stuck = list(
                model.objects.select_for_update(skip_locked=True).filter(
                    sync_status=model.SYNC_PROCESSING,
                    claimed_at__lt=cutoff,
                )
            )
            for row in stuck:
                row.sync_status = row.claimed_from_status or model.SYNC_PENDING
                row.claimed_at = None
                row.claimed_from_status = ""
            model.objects.bulk_update(stuck, ["sync_status", "claimed_at", "claimed_from_status"])
            released += len(stuck)

    if released:
        logger.warning("Released expired sync claims", extra={"released": released})
    return released


def _claim(model, qs, *, limit: int, now) -> list:
    with transaction.atomic():
        rows = list(qs.select_for_update(skip_locked=True, of=("self",))[:limit])
        for row in rows:
            row.claimed_from_status = row.sync_status
            row.sync_status = model.SYNC_PROCESSING
            row.claimed_at = now
        model.objects.bulk_update(rows, ["sync_status", "claimed_from_status", "claimed_at"])
    return rows


def _release(row, *, note: str = "") -> None:
    """Hand a claimed row back untouched (no attempt counted)."""
    row.sync_status = row.claimed_from_status or row.SYNC_PENDING
    row.claimed_at = None
    row.claimed_from_status = ""
    fields = ["sync_status", "claimed_at", "claimed_from_status", "updated_at"]
    if note:
        row.sync_error = note
        fields.append("sync_error")
    row.save(update_fields=fields)


def _fail(row, error: str, *, now) -> None:
    attempts = row.attempt_count + 1
    row.attempt_count = attempts
    row.sync_status = row.SYNC_FAILED
    row.sync_error = error[:2000]
    row.claimed_at = None
    row.claimed_from_status = ""

    if attempts >= _sync_conf("MAX_ATTEMPTS"):
        row.next_attempt_at = None
    else:
        delay = min(_sync_conf("RETRY_BASE_MINUTES") * 2 ** (attempts - 1), _sync_conf("RETRY_MAX_MINUTES"))
        row.next_attempt_at = now + timedelta(minutes=delay)

    row.save(
        update_fields=[
            "attempt_count",
            "sync_status",
            "sync_error",
            "next_attempt_at",
            "claimed_at",
            "claimed_from_status",
            "updated_at",
        ]
    )


# ------------------------------------------------------------
# Per-record sync
# ------------------------------------------------------------


def _invoice_precondition(invoice: StagingInvoice) -> str:
    if invoice.is_zero_value:
        return ""
    if invoice.is_credit_note:
        if invoice.refund_id and invoice.refund.status != Refund.STATUS_COMPLETED:
            return "Refund not completed yet"
        return ""
    if invoice.payment_id is None or invoice.payment.status not in CLEARED_PAYMENT_STATUSES:
        return "Payment not completed yet"
    return ""


def _run_one(row, ctx: TenantContext, submit, *, now, label: str) -> str:
    try:
        result = submit()
    except XeroApiError as exc:
        if exc.is_rate_limited:
            logger.warning("Xero rate limit hit", extra={"record": label, "staging_id": str(row.id)})
            _release(row)
            return OUTCOME_RATE_LIMITED
        logger.error("Xero sync failed", extra={"record": label, "staging_id": str(row.id), "error": str(exc)})
        _fail(row, str(exc), now=now)
        return OUTCOME_FAILED
    except AccountingServiceError as exc:
        logger.error("Sync precondition failed", extra={"record": label, "staging_id": str(row.id), "error": str(exc)})
        _fail(row, str(exc), now=now)
        return OUTCOME_FAILED
    except Exception as exc:
        logger.exception("Unexpected error syncing staging row", extra={"record": label, "staging_id": str(row.id)})
        _fail(row, f"Unexpected error: {exc}", now=now)
        return OUTCOME_FAILED

    row.tenant_id = ctx.tenant_id
    row.sync_status = row.SYNC_SYNCED
    row.sync_error = ""
    row.next_attempt_at = None
    row.claimed_at = None
    row.claimed_from_status = ""
    row.last_synced_at = timezone.now()
    fields = [
        "tenant_id",
        "sync_status",
        "sync_error",
        "next_attempt_at",
        "claimed_at",
        "claimed_from_status",
        "last_synced_at",
        "updated_at",
    ]

    if isinstance(row, StagingInvoice):
        row.xero_invoice_id = result.remote_id
        row.invoice_number = result.number or row.invoice_number
        row.invoice_status = StagingInvoice.STATUS_AUTHORISED
        fields += ["xero_invoice_id", "invoice_number", "invoice_status"]
    else:
        row.xero_payment_id = result.remote_id
        fields.append("xero_payment_id")

    row.save(update_fields=fields)
    logger.info("Staging row synced", extra={"record": label, "staging_id": str(row.id), "xero_id": result.remote_id})
    return OUTCOME_SYNCED


def sync_invoice(ctx: TenantContext, invoice: StagingInvoice, *, now=None) -> str:
    now = now or timezone.now()
    skip = _invoice_precondition(invoice)
    if skip:
        logger.info("Staging invoice not ready", extra={"staging_id": str(invoice.id), "reason": skip})
        _release(invoice, note=skip)
        return OUTCOME_SKIPPED

    # The source cleared, so the remote document goes out ready for payment.
    invoice.invoice_status = StagingInvoice.STATUS_AUTHORISED
    return _run_one(invoice, ctx, lambda: xero_adapter.submit_invoice(ctx, invoice), now=now, label="invoice")


def sync_payment(ctx: TenantContext, payment: StagingPayment, *, now=None) -> str:
    now = now or timezone.now()
    return _run_one(payment, ctx, lambda: xero_adapter.submit_payment(ctx, payment), now=now, label="payment")


# ------------------------------------------------------------
# Run
# ------------------------------------------------------------


def _process(model, qs, sync_one, ctx, counts: SyncCounts, *, batch_size: int, now) -> bool:
    """Returns True when the run stopped on a rate limit."""
    claimed = _claim(model, qs, limit=batch_size, now=now)
    for index, row in enumerate(claimed):
        outcome = sync_one(ctx, row, now=now)
        if outcome == OUTCOME_RATE_LIMITED:
            for rest in claimed[index:]:
                if rest.sync_status == model.SYNC_PROCESSING:
                    _release(rest)
                counts.skipped += 1
            return True
        counts.add(outcome)
    return False


def run_sync(
    *,
    tenant: Optional[str] = None,
    batch_size: Optional[int] = None,
    triggered_by: str = "manual",
) -> SyncSummary:
    now = timezone.now()
    batch_size = batch_size or _sync_conf("BATCH_SIZE")
    summary = SyncSummary()

    event = SystemEvent.objects.create(event_type=SystemEvent.EVENT_XERO_SYNC, triggered_by=triggered_by)
    summary.event_id = str(event.id)
    summary.released = release_expired_claims(now=now)

    invoices = eligible_invoices(now=now, tenant_id=tenant)
    payments = eligible_payments(now=now, tenant_id=tenant)

    if not invoices.exists() and not payments.exists():
        logger.info("Nothing to sync to Xero")
        event.finish(status=SystemEvent.STATUS_COMPLETED, summary=summary.as_dict())
        return summary

    try:
        ctx = resolve_tenant(tenant)
    except XeroConnectionError as exc:
        logger.error("Xero sync skipped: %s", exc)
        summary.error = str(exc)
        event.finish(status=SystemEvent.STATUS_FAILED, summary=summary.as_dict())
        return summary

    summary.tenant_id = ctx.tenant_id

    summary.rate_limited = _process(
        StagingInvoice,
        invoices,
        sync_invoice,
        ctx,
        summary.invoices,
        batch_size=batch_size,
        now=now,
    )
    if not summary.rate_limited:
        # Re-evaluated after invoices so payments see freshly synced remote ids.
        summary.rate_limited = _process(
            StagingPayment,
            eligible_payments(now=now, tenant_id=tenant),
            sync_payment,
            ctx,
            summary.payments,
            batch_size=batch_size,
            now=now,
        )

    event.finish(status=SystemEvent.STATUS_COMPLETED, summary=summary.as_dict())
    logger.info(
        "Xero sync finished",
        extra={
            "tenant_id": ctx.tenant_id,
            "invoices": summary.invoices.as_dict(),
            "payments": summary.payments.as_dict(),
            "rate_limited": summary.rate_limited,
        },
    )
    return summary


# ------------------------------------------------------------
# Operator tools
# ------------------------------------------------------------


def reset_failed(*, ids: Optional[list] = None) -> dict:
    """Re-queue failed rows now (clears attempts, so parked rows come back too)."""
    reset = {}
    for key, model in (("invoices", StagingInvoice), ("payments", StagingPayment)):
        qs = model.objects.filter(sync_status=model.SYNC_FAILED)
        if ids:
            qs = qs.filter(id__in=ids)
        reset[key] = qs.update(
            sync_status=model.SYNC_PENDING,
            attempt_count=0,
            next_attempt_at=None,
            sync_error="",
            updated_at=timezone.now(),
        )
    logger.info("Failed staging rows re-queued", extra=reset)
    return reset


def pending_counts() -> dict:
    counts = {}
    for key, model in (("invoices", StagingInvoice), ("payments", StagingPayment)):
        rows = model.objects.values("sync_status").annotate(total=Count("id"))
        by_status = {status: 0 for status, _ in model.SYNC_STATUS_CHOICES}
        by_status.update({row["sync_status"]: row["total"] for row in rows})
        counts[key] = by_status
    return counts

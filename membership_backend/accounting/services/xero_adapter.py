# accounting/services/xero_adapter.py

"""
======================================================
PATH: accounting/services/xero_adapter.py
======================================================
ACCOUNTING ADAPTER (XERO)

Maps local staging rows to Xero documents and submits them:
- contacts      -> cached per (user, tenant) in XeroContact
- invoices      -> ACCREC (DRAFT, or AUTHORISED when zero-net / ready)
- credit notes  -> ACCRECCREDIT
- payments      -> applied to an Invoice or a CreditNote by remote id
- accounts      -> raw chart of accounts (see accounts_sync.py)

Rules:
- cents -> dollars happens here and nowhere else
- every remote call writes one XeroSyncLog row
- errors propagate as XeroApiError / XeroConnectionError / StagingError;
  the Sync Orchestrator is the catching boundary
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.utils import timezone

from accounting.models import StagingInvoice, StagingPayment, XeroContact, XeroSyncLog
from accounting.services.exceptions import StagingError, XeroApiError
from accounting.services.tenant import TenantContext
from accounting.services.xero_client import XeroClient

logger = logging.getLogger(__name__)

CONTACT_STATUS_ARCHIVED = "ARCHIVED"


@dataclass(frozen=True)
class SubmitResult:
    remote_id: str
    number: str = ""
    status: str = ""
    request: dict = field(default_factory=dict)
    response: dict = field(default_factory=dict)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------


def to_dollars(cents: int) -> float:
    return float((Decimal(int(cents)) / Decimal(100)).quantize(Decimal("0.01")))


def _client(ctx: TenantContext, client: Optional[XeroClient]) -> XeroClient:
    return client or XeroClient(ctx)


def _log(
    ctx: TenantContext,
    *,
    operation: str,
    status: str,
    record_type: str = "",
    record_id: str = "",
    xero_id: str = "",
    error: str = "",
    request: Optional[dict] = None,
    response=None,
) -> None:
    XeroSyncLog.objects.create(
        tenant_id=ctx.tenant_id,
        operation_type=operation,
        status=status,
        record_type=record_type,
        record_id=record_id,
        xero_id=xero_id or "",
        error_message=error,
        request_data=request,
        response_data=response if isinstance(response, (dict, list)) else None,
    )


def _call(ctx, *, operation: str, record_type: str, record_id: str, request: Optional[dict], send):
    """Run one remote call and write its XeroSyncLog row either way."""
    try:
        response = send()
    except XeroApiError as exc:
        _log(
            ctx,
            operation=operation,
            status=XeroSyncLog.STATUS_ERROR,
            record_type=record_type,
            record_id=record_id,
            error=str(exc),
            request=request,
            response=exc.response,
        )
        raise
    return response


def contact_name_for(user) -> str:
    name = f"{user.first_name} {user.last_name}".strip() or user.email
    if user.member_id:
        return f"{name} - {user.member_id}"
    return name


def _escape(value: str) -> str:
    return (value or "").replace('"', '\\"')


# ------------------------------------------------------------
# Contacts
# ------------------------------------------------------------


def _find_contact(client: XeroClient, user, name: str) -> Optional[dict]:
    by_name = client.get("Contacts", params={"where": f'Name=="{_escape(name)}"'}).get("Contacts") or []
    for contact in by_name:
        if contact.get("ContactStatus") != CONTACT_STATUS_ARCHIVED:
            return contact

    if not user.email:
        return None

    by_email = client.get("Contacts", params={"where": f'EmailAddress=="{_escape(user.email)}"'}).get("Contacts") or []
    live = [c for c in by_email if c.get("ContactStatus") != CONTACT_STATUS_ARCHIVED]
    for contact in live:
        if contact.get("FirstName") == user.first_name and contact.get("LastName") == user.last_name:
            return contact
    return live[0] if live else None


def get_or_create_contact(ctx: TenantContext, user, *, client: Optional[XeroClient] = None) -> str:
    cached = XeroContact.objects.filter(user=user, tenant_id=ctx.tenant_id).first()
    if cached:
        return cached.xero_contact_id

    client = _client(ctx, client)
    name = contact_name_for(user)

    def send():
        found = _find_contact(client, user, name)
        if found:
            return found

        payload = {
            "Contacts": [
                {
                    "Name": name,
                    "FirstName": user.first_name,
                    "LastName": user.last_name,
                    "EmailAddress": user.email,
                    "AccountNumber": user.member_id or "",
                }
            ]
        }
        try:
            return client.post("Contacts", payload)["Contacts"][0]
        except XeroApiError as exc:
            # Xero contact names are unique; an archived or foreign contact can hold ours.
            if "already assigned" not in str(exc).lower():
                raise
            local = (user.email or "").split("@")[0]
            payload["Contacts"][0]["Name"] = f"{name} ({local})"
            return client.post("Contacts", payload)["Contacts"][0]

    contact = _call(
        ctx,
        operation=XeroSyncLog.OP_CONTACT_SYNC,
        record_type="user",
        record_id=str(user.pk),
        request={"name": name, "email": user.email},
        send=send,
    )

    contact_id = contact["ContactID"]
    XeroContact.objects.update_or_create(
        user=user,
        tenant_id=ctx.tenant_id,
        defaults={"xero_contact_id": contact_id, "contact_name": contact.get("Name") or name},
    )
    _log(
        ctx,
        operation=XeroSyncLog.OP_CONTACT_SYNC,
        status=XeroSyncLog.STATUS_SUCCESS,
        record_type="user",
        record_id=str(user.pk),
        xero_id=contact_id,
    )
    return contact_id


# ------------------------------------------------------------
# Invoices + credit notes
# ------------------------------------------------------------


def _line_payload(item) -> dict:
    return {
        "Description": item.description,
        "Quantity": item.quantity,
        "UnitAmount": to_dollars(item.unit_amount),
        "LineAmount": to_dollars(item.line_amount),
        "AccountCode": item.account_code,
        "TaxType": item.tax_type,
    }


def _remote_status(invoice: StagingInvoice) -> str:
    if invoice.is_zero_value or invoice.invoice_status == StagingInvoice.STATUS_AUTHORISED:
        return StagingInvoice.STATUS_AUTHORISED
    return StagingInvoice.STATUS_DRAFT


def _reference(invoice: StagingInvoice) -> str:
    meta = invoice.metadata or {}
    if invoice.payment_id and invoice.payment.stripe_payment_intent_id:
        return invoice.payment.stripe_payment_intent_id
    return meta.get("stripe_payment_intent_id") or meta.get("refund_id") or str(invoice.id)[:8]


def build_invoice_payload(invoice: StagingInvoice, *, contact_id: str) -> dict:
    issued = timezone.localdate(invoice.staged_at)
    doc = {
        "Type": invoice.invoice_type,
        "Contact": {"ContactID": contact_id},
        "LineItems": [_line_payload(item) for item in invoice.line_items.all()],
        "Date": issued.isoformat(),
        "Reference": _reference(invoice),
        "Status": _remote_status(invoice),
        "CurrencyCode": settings.XERO["CURRENCY_CODE"],
        "LineAmountTypes": "NoTax",
    }
    if not invoice.is_credit_note:
        doc["DueDate"] = (issued + timedelta(days=settings.XERO["INVOICE_DUE_DAYS"])).isoformat()

    # Re-sending a row Xero already knows updates it instead of duplicating it.
    if invoice.xero_invoice_id:
        doc["CreditNoteID" if invoice.is_credit_note else "InvoiceID"] = invoice.xero_invoice_id
    return doc


def submit_invoice(ctx: TenantContext, invoice: StagingInvoice, *, client: Optional[XeroClient] = None) -> SubmitResult:
    if invoice.is_credit_note:
        return submit_credit_note(ctx, invoice, client=client)

    client = _client(ctx, client)
    contact_id = get_or_create_contact(ctx, invoice.user, client=client)
    doc = build_invoice_payload(invoice, contact_id=contact_id)
    request = {"Invoices": [doc]}

    response = _call(
        ctx,
        operation=XeroSyncLog.OP_INVOICE_SYNC,
        record_type="invoice",
        record_id=str(invoice.id),
        request=request,
        send=lambda: client.post("Invoices", request),
    )

    remote = (response.get("Invoices") or [{}])[0]
    if not remote.get("InvoiceID"):
        raise XeroApiError("Xero returned no InvoiceID", response=response)

    result = SubmitResult(
        remote_id=remote["InvoiceID"],
        number=remote.get("InvoiceNumber") or "",
        status=remote.get("Status") or doc["Status"],
        request=request,
        response=response,
    )
    _log(
        ctx,
        operation=XeroSyncLog.OP_INVOICE_SYNC,
        status=XeroSyncLog.STATUS_SUCCESS,
        record_type="invoice",
        record_id=str(invoice.id),
        xero_id=result.remote_id,
        request=request,
        response=response,
    )
    logger.info(
        "Invoice submitted to Xero",
        extra={"staging_id": str(invoice.id), "xero_invoice_id": result.remote_id, "tenant_id": ctx.tenant_id},
    )
    return result


def submit_credit_note(
    ctx: TenantContext,
    invoice: StagingInvoice,
    *,
    client: Optional[XeroClient] = None,
) -> SubmitResult:
    """Credit note lines are already in credit sense (positive = money back)."""
    client = _client(ctx, client)
    contact_id = get_or_create_contact(ctx, invoice.user, client=client)
    doc = build_invoice_payload(invoice, contact_id=contact_id)
    doc["Type"] = StagingInvoice.TYPE_CREDIT_NOTE
    request = {"CreditNotes": [doc]}

    response = _call(
        ctx,
        operation=XeroSyncLog.OP_CREDIT_NOTE_SYNC,
        record_type="credit_note",
        record_id=str(invoice.id),
        request=request,
        send=lambda: client.post("CreditNotes", request),
    )

    remote = (response.get("CreditNotes") or [{}])[0]
    if not remote.get("CreditNoteID"):
        raise XeroApiError("Xero returned no CreditNoteID", response=response)

    result = SubmitResult(
        remote_id=remote["CreditNoteID"],
        number=remote.get("CreditNoteNumber") or "",
        status=remote.get("Status") or doc["Status"],
        request=request,
        response=response,
    )
    _log(
        ctx,
        operation=XeroSyncLog.OP_CREDIT_NOTE_SYNC,
        status=XeroSyncLog.STATUS_SUCCESS,
        record_type="credit_note",
        record_id=str(invoice.id),
        xero_id=result.remote_id,
        request=request,
        response=response,
    )
    return result


def delete_draft_invoice(ctx: TenantContext, xero_invoice_id: str, *, client: Optional[XeroClient] = None) -> None:
    client = _client(ctx, client)
    request = {"Invoices": [{"InvoiceID": xero_invoice_id, "Status": "DELETED"}]}
    response = _call(
        ctx,
        operation=XeroSyncLog.OP_INVOICE_SYNC,
        record_type="invoice_delete",
        record_id=xero_invoice_id,
        request=request,
        send=lambda: client.post(f"Invoices/{xero_invoice_id}", request),
    )
    _log(
        ctx,
        operation=XeroSyncLog.OP_INVOICE_SYNC,
        status=XeroSyncLog.STATUS_SUCCESS,
        record_type="invoice_delete",
        record_id=xero_invoice_id,
        xero_id=xero_invoice_id,
        response=response,
    )


# ------------------------------------------------------------
# Payments
# ------------------------------------------------------------


def build_payment_payload(payment: StagingPayment) -> dict:
    invoice = payment.invoice
    if not invoice.xero_invoice_id:
        raise StagingError("Associated invoice not synced to Xero yet")

    target = (
        {"CreditNote": {"CreditNoteID": invoice.xero_invoice_id}}
        if invoice.is_credit_note
        else {"Invoice": {"InvoiceID": invoice.xero_invoice_id}}
    )
    return {
        **target,
        "Account": {"Code": payment.bank_account_code},
        "Amount": to_dollars(abs(payment.amount_paid)),
        "Date": timezone.localdate(payment.staged_at).isoformat(),
        "Reference": payment.reference,
    }


def submit_payment(ctx: TenantContext, payment: StagingPayment, *, client: Optional[XeroClient] = None) -> SubmitResult:
    doc = build_payment_payload(payment)
    client = _client(ctx, client)
    request = {"Payments": [doc]}

    response = _call(
        ctx,
        operation=XeroSyncLog.OP_PAYMENT_SYNC,
        record_type="payment",
        record_id=str(payment.id),
        request=request,
        send=lambda: client.put("Payments", request),
    )

    remote = (response.get("Payments") or [{}])[0]
    if not remote.get("PaymentID"):
        raise XeroApiError("Xero returned no PaymentID", response=response)

    _log(
        ctx,
        operation=XeroSyncLog.OP_PAYMENT_SYNC,
        status=XeroSyncLog.STATUS_SUCCESS,
        record_type="payment",
        record_id=str(payment.id),
        xero_id=remote["PaymentID"],
        request=request,
        response=response,
    )
    return SubmitResult(
        remote_id=remote["PaymentID"],
        status=remote.get("Status") or "",
        request=request,
        response=response,
    )


# ------------------------------------------------------------
# Chart of accounts
# ------------------------------------------------------------


def fetch_accounts(ctx: TenantContext, *, client: Optional[XeroClient] = None) -> list[dict]:
    client = _client(ctx, client)
    response = _call(
        ctx,
        operation=XeroSyncLog.OP_ACCOUNTS_SYNC,
        record_type="accounts",
        record_id="",
        request=None,
        send=lambda: client.get("Accounts"),
    )
    return list(response.get("Accounts") or [])

# accounting/services/staging_manager.py

"""
======================================================
PATH: accounting/services/staging_manager.py
======================================================
STAGING MANAGER (AUTHORITATIVE)

Turns money events into local staging rows:
- completed (or about to be paid) purchases -> ACCREC invoice (+ payment)
- refunds -> ACCRECCREDIT credit note (+ negative payment)
- category changes -> upgrade invoice / downgrade credit note / net-zero swap

Rules:
- Exactly one StagingInvoice per event; a StagingPayment only when money moves.
- net_amount == SUM(line_amount), checked before the transaction commits.
- All amounts are integer cents. Conversion to decimals happens only in the
  Xero adapter.
- Missing accounting codes abort staging (MissingAccountingCodeError).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.db import transaction
from django.utils import timezone

from accounting.models import StagingInvoice, StagingLineItem, StagingPayment
from accounting.services import account_resolver
from accounting.services.exceptions import StagingError
from accounting.services.staging_metadata import (
    CategoryChangeMetadata,
    DiscountCodeRefundMetadata,
    DiscountUsed,
    FreePurchaseMetadata,
    MembershipMetadata,
    NewRegistrationMetadata,
    ProportionalRefundMetadata,
)
from discounts.services.discount_limit import record_usage
from payments.models import Payment, Refund

logger = logging.getLogger(__name__)


@dataclass
class LineSpec:
    line_item_type: str
    description: str
    line_amount: int
    account_code: str
    quantity: int = 1
    unit_amount: Optional[int] = None
    tax_type: str = "NONE"
    item_id: str = ""
    discount_code: object = None

    def as_preview(self) -> dict:
        return {
            "line_item_type": self.line_item_type,
            "description": self.description,
            "quantity": self.quantity,
            "unit_amount": self.resolved_unit_amount,
            "line_amount": self.line_amount,
            "account_code": self.account_code,
            "tax_type": self.tax_type,
        }

    @property
    def resolved_unit_amount(self) -> int:
        if self.unit_amount is not None:
            return self.unit_amount
        return self.line_amount // max(self.quantity, 1)


@dataclass
class PaymentSpec:
    amount_paid: int
    reference: str
    sync_status: str
    bank_account_code: str = field(default_factory=account_resolver.stripe_bank_account_code)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def allocate_proportionally(amount: int, weights: list[int]) -> list[int]:
    """
    Split `amount` across `weights` by weight / SUM(weights), keeping signs.
    Shares are rounded half-up and the rounding difference lands on the
    first share, so the result always sums to `amount`.
    """
    total = sum(weights)
    if not weights or total == 0:
        raise StagingError("Cannot allocate across lines that sum to zero")

    shares = [_round_half_up(Decimal(amount) * Decimal(w) / Decimal(total)) for w in weights]
    shares[0] += amount - sum(shares)
    return shares


def _totals(lines: list[LineSpec]) -> tuple[int, int, int]:
    total = sum(line.line_amount for line in lines if line.line_amount > 0)
    discount = -sum(line.line_amount for line in lines if line.line_amount < 0)
    return total, discount, total - discount


def _persist(
    *,
    user,
    reason: str,
    metadata,
    lines: list[LineSpec],
    invoice_type: str = StagingInvoice.TYPE_INVOICE,
    invoice_status: str = StagingInvoice.STATUS_DRAFT,
    sync_status: str = StagingInvoice.SYNC_STAGED,
    payment: Optional[Payment] = None,
    refund=None,
    payment_spec: Optional[PaymentSpec] = None,
) -> StagingInvoice:
    if not lines:
        raise StagingError("A staging invoice needs at least one line")

    total, discount, net = _totals(lines)

    invoice = StagingInvoice.objects.create(
        user=user,
        payment=payment,
        refund=refund,
        reason=reason,
        invoice_type=invoice_type,
        invoice_status=invoice_status,
        sync_status=sync_status,
        metadata=metadata.to_dict(),
        total_amount=total,
        discount_amount=discount,
        net_amount=net,
    )

    StagingLineItem.objects.bulk_create(
        [
            StagingLineItem(
                invoice=invoice,
                position=i,
                line_item_type=spec.line_item_type,
                description=spec.description[:500],
                quantity=spec.quantity,
                unit_amount=spec.resolved_unit_amount,
                line_amount=spec.line_amount,
                account_code=spec.account_code,
                tax_type=spec.tax_type,
                item_id=spec.item_id,
                discount_code=spec.discount_code,
            )
            for i, spec in enumerate(lines)
        ]
    )

    if not invoice.is_balanced():
        raise StagingError(
            f"Staging invoice {invoice.id} does not balance: lines={invoice.line_total()} net={invoice.net_amount}"
        )

    if payment_spec is not None:
        StagingPayment.objects.create(
            invoice=invoice,
            amount_paid=payment_spec.amount_paid,
            bank_account_code=payment_spec.bank_account_code,
            reference=payment_spec.reference[:255],
            sync_status=payment_spec.sync_status,
        )

    logger.info(
        "Staging invoice created",
        extra={
            "staging_id": str(invoice.id),
            "reason": reason,
            "invoice_type": invoice_type,
            "net_amount": net,
            "sync_status": sync_status,
        },
    )
    return invoice


def _purchase_invoice_for(payment: Payment) -> Optional[StagingInvoice]:
    return (
        StagingInvoice.objects.filter(
            payment=payment,
            invoice_type=StagingInvoice.TYPE_INVOICE,
            reason__in=StagingInvoice.PURCHASE_REASONS,
        )
        .exclude(sync_status=StagingInvoice.SYNC_IGNORE)
        .order_by("staged_at")
        .first()
    )


# ------------------------------------------------------------
# Purchases
# ------------------------------------------------------------


@transaction.atomic
def stage_purchase(*, payment: Payment, metadata, line_items: list[LineSpec], reason: str) -> StagingInvoice:
    """
    Stage the ACCREC invoice for a purchase.

    - net 0                       -> AUTHORISED / pending, no payment row
    - payment already completed   -> AUTHORISED / pending + pending payment
    - payment not yet confirmed   -> DRAFT / staged + staged payment
    """
    existing = _purchase_invoice_for(payment)
    if existing:
        logger.info(
            "Purchase already staged",
            extra={"payment_id": str(payment.id), "staging_id": str(existing.id)},
        )
        return existing

    _, _, net = _totals(line_items)

    if net == 0:
        return _persist(
            user=payment.user,
            payment=payment,
            reason=reason,
            metadata=metadata,
            lines=line_items,
            invoice_status=StagingInvoice.STATUS_AUTHORISED,
            sync_status=StagingInvoice.SYNC_PENDING,
        )

    if payment.final_amount != net:
        logger.warning(
            "Payment amount differs from staged net amount",
            extra={"payment_id": str(payment.id), "final_amount": payment.final_amount, "net": net},
        )

    completed = payment.status == Payment.STATUS_COMPLETED
    sync_status = StagingInvoice.SYNC_PENDING if completed else StagingInvoice.SYNC_STAGED

    return _persist(
        user=payment.user,
        payment=payment,
        reason=reason,
        metadata=metadata,
        lines=line_items,
        invoice_status=StagingInvoice.STATUS_AUTHORISED if completed else StagingInvoice.STATUS_DRAFT,
        sync_status=sync_status,
        payment_spec=PaymentSpec(
            amount_paid=payment.final_amount,
            reference=payment.stripe_payment_intent_id or f"Payment {str(payment.id)[:8]}",
            sync_status=sync_status,
        ),
    )


def registration_lines(user_registration) -> list[LineSpec]:
    category = user_registration.registration_category
    registration = user_registration.registration

    lines = [
        LineSpec(
            line_item_type=StagingLineItem.TYPE_REGISTRATION,
            description=f"{registration.name} - {category.name}",
            line_amount=user_registration.registration_fee,
            account_code=account_resolver.registration_category_code(category),
            item_id=str(category.id),
        )
    ]

    code = user_registration.discount_code
    if code is not None and user_registration.discount_amount > 0:
        lines.append(
            LineSpec(
                line_item_type=StagingLineItem.TYPE_DISCOUNT,
                description=f"Discount: {code.category.name} ({code.code})",
                line_amount=-user_registration.discount_amount,
                account_code=account_resolver.discount_category_code(code.category),
                discount_code=code,
            )
        )
    return lines


def stage_registration_purchase(user_registration, payment: Payment) -> StagingInvoice:
    lines = registration_lines(user_registration)
    code = user_registration.discount_code

    if payment.final_amount == 0:
        reason = StagingInvoice.REASON_FREE_PURCHASE
        metadata = FreePurchaseMetadata(
            user_id=str(user_registration.user_id),
            source="registration",
            record_id=str(user_registration.id),
        )
    else:
        reason = StagingInvoice.REASON_NEW_REGISTRATION
        used = ()
        if code is not None and user_registration.discount_amount > 0:
            used = (
                DiscountUsed(
                    code=code.code,
                    amount_saved=user_registration.discount_amount,
                    category_name=code.category.name,
                    accounting_code=code.category.accounting_code,
                ),
            )
        metadata = NewRegistrationMetadata(
            user_id=str(user_registration.user_id),
            user_registration_id=str(user_registration.id),
            registration_id=str(user_registration.registration_id),
            category_id=str(user_registration.registration_category_id),
            stripe_payment_intent_id=payment.stripe_payment_intent_id,
            discount_codes_used=used,
        )

    return stage_purchase(payment=payment, metadata=metadata, line_items=lines, reason=reason)


def membership_lines(membership, months: int) -> list[LineSpec]:
    plural = "s" if months != 1 else ""
    return [
        LineSpec(
            line_item_type=StagingLineItem.TYPE_MEMBERSHIP,
            description=f"{membership.name} ({months} month{plural})",
            quantity=months,
            unit_amount=membership.price_monthly,
            line_amount=membership.price_monthly * months,
            account_code=account_resolver.membership_code(membership),
            item_id=str(membership.id),
        )
    ]


def stage_membership_purchase(
    *,
    user,
    membership,
    months: int,
    payment: Payment,
    user_membership=None,
) -> StagingInvoice:
    lines = membership_lines(membership, months)

    if payment.final_amount == 0:
        reason = StagingInvoice.REASON_FREE_PURCHASE
        metadata = FreePurchaseMetadata(
            user_id=str(user.pk),
            source="membership",
            record_id=str(user_membership.id if user_membership else membership.id),
        )
    else:
        reason = StagingInvoice.REASON_MEMBERSHIP
        metadata = MembershipMetadata(
            user_id=str(user.pk),
            user_membership_id=str(user_membership.id) if user_membership else None,
            membership_id=str(membership.id),
            months=months,
            stripe_payment_intent_id=payment.stripe_payment_intent_id,
        )

    return stage_purchase(payment=payment, metadata=metadata, line_items=lines, reason=reason)


@transaction.atomic
def promote_to_pending(*, invoice: StagingInvoice, payment: Payment, metadata_updates: Optional[dict] = None):
    """
    Purchase-time staging -> ready to sync, once the processor confirms payment.
    Rows that already moved on are left alone.
    """
    invoice = StagingInvoice.objects.select_for_update().get(pk=invoice.pk)
    if invoice.sync_status != StagingInvoice.SYNC_STAGED:
        return invoice

    invoice.sync_status = StagingInvoice.SYNC_PENDING
    invoice.invoice_status = StagingInvoice.STATUS_AUTHORISED
    invoice.payment = payment
    if metadata_updates:
        invoice.metadata = {**invoice.metadata, **metadata_updates}
    invoice.save(update_fields=["sync_status", "invoice_status", "payment", "metadata", "updated_at"])

    invoice.payments.filter(sync_status=StagingPayment.SYNC_STAGED).update(
        sync_status=StagingPayment.SYNC_PENDING,
        bank_account_code=account_resolver.stripe_bank_account_code(),
        amount_paid=payment.final_amount,
        reference=payment.stripe_payment_intent_id or f"Payment {str(payment.id)[:8]}",
        updated_at=timezone.now(),
    )

    logger.info(
        "Staging promoted to pending",
        extra={"staging_id": str(invoice.id), "payment_id": str(payment.id)},
    )
    return invoice


@transaction.atomic
def discard_abandoned_drafts(*, payment: Payment) -> list[tuple[str, str]]:
    """
    Clean up purchase staging for a failed payment.

    Rows never pushed to Xero are deleted. Rows already pushed are marked
    ignore and returned as (tenant_id, xero_invoice_id) so the caller can
    delete the remote draft.
    """
    rows = StagingInvoice.objects.select_for_update().filter(
        payment=payment,
        reason__in=StagingInvoice.PURCHASE_REASONS,
        sync_status__in=[StagingInvoice.SYNC_STAGED, StagingInvoice.SYNC_PENDING, StagingInvoice.SYNC_DRAFT],
    )

    remote: list[tuple[str, str]] = []
    for row in rows:
        if row.xero_invoice_id:
            row.sync_status = StagingInvoice.SYNC_IGNORE
            row.sync_error = "Payment failed; remote draft scheduled for deletion"
            row.save(update_fields=["sync_status", "sync_error", "updated_at"])
            row.payments.exclude(sync_status=StagingPayment.SYNC_SYNCED).update(
                sync_status=StagingPayment.SYNC_IGNORE
            )
            remote.append((row.tenant_id or "", row.xero_invoice_id))
        else:
            logger.info("Deleting abandoned staging draft", extra={"staging_id": str(row.id)})
            row.delete()

    return remote


# ------------------------------------------------------------
# Refunds
# ------------------------------------------------------------


def proportional_refund_lines(payment: Payment, amount: int) -> list[LineSpec]:
    original = _purchase_invoice_for(payment)
    source = list(original.line_items.all()) if original else []

    if not source or sum(item.line_amount for item in source) == 0:
        return [
            LineSpec(
                line_item_type=StagingLineItem.TYPE_REFUND,
                description="Refund",
                line_amount=amount,
                account_code=account_resolver.fallback_refund_code(),
            )
        ]

    shares = allocate_proportionally(amount, [item.line_amount for item in source])
    return [
        LineSpec(
            line_item_type=item.line_item_type,
            description=f"Credit: {item.description}",
            line_amount=share,
            account_code=item.account_code,
            tax_type=item.tax_type,
            discount_code=item.discount_code,
        )
        for item, share in zip(source, shares)
    ]


def discount_refund_lines(discount_code, amount: int) -> list[LineSpec]:
    category = discount_code.category
    return [
        LineSpec(
            line_item_type=StagingLineItem.TYPE_DISCOUNT_REFUND,
            description=f"Credit: {category.name} discount ({discount_code.code})",
            line_amount=amount,
            account_code=account_resolver.discount_category_code(category),
            discount_code=discount_code,
        )
    ]


def preview_refund_lines(*, payment: Payment, refund_type: str, amount: int, discount_code=None) -> list[dict]:
    if refund_type == Refund.TYPE_DISCOUNT_CODE:
        if discount_code is None:
            raise StagingError("A discount code is required for a discount code refund")
        lines = discount_refund_lines(discount_code, amount)
    else:
        lines = proportional_refund_lines(payment, amount)
    return [line.as_preview() for line in lines]


@transaction.atomic
def stage_proportional_credit_note(*, refund) -> StagingInvoice:
    payment = refund.payment
    metadata = ProportionalRefundMetadata(
        user_id=str(refund.user_id),
        refund_id=str(refund.id),
        original_payment_id=str(payment.id),
        refund_amount=refund.amount,
    )
    return _persist(
        user=refund.user,
        payment=payment,
        refund=refund,
        reason=StagingInvoice.REASON_REFUND_PROPORTIONAL,
        metadata=metadata,
        lines=proportional_refund_lines(payment, refund.amount),
        invoice_type=StagingInvoice.TYPE_CREDIT_NOTE,
        # no money moves on a zero refund, so no payment row
        payment_spec=PaymentSpec(
            amount_paid=-refund.amount,
            reference=f"Refund {str(refund.id)[:8]}",
            sync_status=StagingPayment.SYNC_STAGED,
        )
        if refund.amount
        else None,
    )


def season_for_payment(payment: Payment):
    from registrations.models import Season

    entry = payment.user_registrations.select_related("registration__season").first()
    if entry:
        return entry.registration.season

    today = date.today()
    season = Season.objects.filter(start_date__lte=today, end_date__gte=today).first() or Season.objects.first()
    if season is None:
        raise StagingError("No season configured for discount usage")
    return season


@transaction.atomic
def stage_discount_credit_note(*, refund, discount_code) -> StagingInvoice:
    payment = refund.payment
    category = discount_code.category

    metadata = DiscountCodeRefundMetadata(
        user_id=str(refund.user_id),
        refund_id=str(refund.id),
        original_payment_id=str(payment.id),
        refund_amount=refund.amount,
        discount_code=discount_code.code,
        discount_category=category.name,
        discount_accounting_code=category.accounting_code,
    )

    invoice = _persist(
        user=refund.user,
        payment=payment,
        refund=refund,
        reason=StagingInvoice.REASON_REFUND_DISCOUNT_CODE,
        metadata=metadata,
        lines=discount_refund_lines(discount_code, refund.amount),
        invoice_type=StagingInvoice.TYPE_CREDIT_NOTE,
        payment_spec=PaymentSpec(
            amount_paid=-refund.amount,
            reference=f"Discount Refund {str(refund.id)[:8]}",
            sync_status=StagingPayment.SYNC_STAGED,
        ),
    )

    entry = payment.user_registrations.select_related("registration").first()
    record_usage(
        user=refund.user,
        discount_code=discount_code,
        season=season_for_payment(payment),
        amount_saved=refund.amount,
        registration=entry.registration if entry else None,
        refund=refund,
    )
    return invoice


def _refund_invoice(refund) -> Optional[StagingInvoice]:
    return StagingInvoice.objects.select_for_update().filter(refund=refund).first()


@transaction.atomic
def mark_refund_staging_ready(*, refund) -> Optional[StagingInvoice]:
    invoice = _refund_invoice(refund)
    if invoice is None:
        logger.warning("No credit note staged for refund", extra={"refund_id": str(refund.id)})
        return None

    if invoice.sync_status == StagingInvoice.SYNC_STAGED:
        invoice.sync_status = StagingInvoice.SYNC_PENDING
        invoice.invoice_status = StagingInvoice.STATUS_AUTHORISED
        invoice.save(update_fields=["sync_status", "invoice_status", "updated_at"])

    invoice.payments.filter(sync_status=StagingPayment.SYNC_STAGED).update(
        sync_status=StagingPayment.SYNC_PENDING,
        updated_at=timezone.now(),
    )
    return invoice


@transaction.atomic
def cancel_refund_staging(*, refund, error: str = "") -> Optional[StagingInvoice]:
    """staged rows -> ignore. Rows already queued or synced are left alone."""
    invoice = _refund_invoice(refund)
    if invoice is None:
        return None

    if invoice.sync_status == StagingInvoice.SYNC_STAGED:
        invoice.sync_status = StagingInvoice.SYNC_IGNORE
        invoice.sync_error = error
        invoice.save(update_fields=["sync_status", "sync_error", "updated_at"])

    invoice.payments.filter(sync_status=StagingPayment.SYNC_STAGED).update(
        sync_status=StagingPayment.SYNC_IGNORE,
        sync_error=error,
        updated_at=timezone.now(),
    )
    return invoice


# ------------------------------------------------------------
# Category change
# ------------------------------------------------------------


@dataclass(frozen=True)
class _Side:
    label: str
    gross: int
    discount: int
    account_code: str
    discount_code: object = None
    discount_account_code: str = ""

    @property
    def net(self) -> int:
        return self.gross - self.discount

    def discount_label(self) -> str:
        if self.discount_code is None:
            return "none"
        return f"{self.discount_code.category.name} ({self.discount_code.code})"


def _side(category, *, gross: int, discount: int, discount_code) -> _Side:
    disc_account = ""
    if discount_code is not None and discount > 0:
        disc_account = account_resolver.discount_category_code(discount_code.category)
    return _Side(
        label=f"{category.registration.name} - {category.name}",
        gross=gross,
        discount=discount,
        account_code=account_resolver.registration_category_code(category),
        discount_code=discount_code if discount > 0 else None,
        discount_account_code=disc_account,
    )


def _swap_lines(
    *,
    add: _Side,
    remove: _Side,
    add_prefix: str = "Category change",
    remove_prefix: str = "Reverse",
    always_four: bool = False,
) -> list[LineSpec]:
    lines = [
        LineSpec(
            line_item_type=StagingLineItem.TYPE_CATEGORY_CHANGE,
            description=f"{add_prefix}: {add.label}",
            line_amount=add.gross,
            account_code=add.account_code,
        )
    ]
    if add.discount or always_four:
        lines.append(
            LineSpec(
                line_item_type=StagingLineItem.TYPE_DISCOUNT,
                description=f"Discount: {add.discount_label()}",
                line_amount=-add.discount,
                account_code=add.discount_account_code or add.account_code,
                discount_code=add.discount_code,
            )
        )
    lines.append(
        LineSpec(
            line_item_type=StagingLineItem.TYPE_CATEGORY_CHANGE,
            description=f"{remove_prefix}: {remove.label}",
            line_amount=-remove.gross,
            account_code=remove.account_code,
        )
    )
    if remove.discount or always_four:
        lines.append(
            LineSpec(
                line_item_type=StagingLineItem.TYPE_DISCOUNT,
                description=f"{remove_prefix} discount: {remove.discount_label()}",
                line_amount=remove.discount,
                account_code=remove.discount_account_code or remove.account_code,
                discount_code=remove.discount_code,
            )
        )
    return lines


def require_category_change_codes(
    *,
    user_registration,
    new_category,
    new_discount_amount: int = 0,
    new_discount_code=None,
) -> None:
    """Raises MissingAccountingCodeError for either side. Run before any money moves."""
    _side(
        user_registration.registration_category,
        gross=user_registration.registration_fee,
        discount=user_registration.discount_amount,
        discount_code=user_registration.discount_code,
    )
    _side(new_category, gross=new_category.price, discount=new_discount_amount, discount_code=new_discount_code)


@transaction.atomic
def stage_category_change(
    *,
    user_registration,
    new_category,
    new_discount_amount: int = 0,
    new_discount_code=None,
    payment: Optional[Payment] = None,
    refund=None,
) -> Optional[StagingInvoice]:
    """
    Stage the accounting for moving a paid registration to another category.

    Prices compared are net of discounts:
    - diff > 0  -> ACCREC for diff (+new, -new discount, -old, +old discount)
    - diff < 0  -> ACCRECCREDIT for |diff| (mirrored lines)
    - diff == 0 and the account codes differ -> net-zero ACCREC, 4 lines
    - otherwise -> None (nothing to record)
    """
    old_category = user_registration.registration_category

    old = _side(
        old_category,
        gross=user_registration.registration_fee,
        discount=user_registration.discount_amount,
        discount_code=user_registration.discount_code,
    )
    new = _side(
        new_category,
        gross=new_category.price,
        discount=new_discount_amount,
        discount_code=new_discount_code,
    )

    diff = new.net - old.net

    metadata = CategoryChangeMetadata(
        user_id=str(user_registration.user_id),
        user_registration_id=str(user_registration.id),
        old_category_id=str(old_category.id),
        new_category_id=str(new_category.id),
        price_difference=diff,
        refund_id=str(refund.id) if refund is not None else None,
        stripe_payment_intent_id=payment.stripe_payment_intent_id if payment is not None else None,
    )

    if diff > 0:
        if payment is None:
            raise StagingError("An upgrade needs the payment that covered the difference")
        completed = payment.status == Payment.STATUS_COMPLETED
        sync_status = StagingInvoice.SYNC_PENDING if completed else StagingInvoice.SYNC_STAGED
        return _persist(
            user=user_registration.user,
            payment=payment,
            reason=StagingInvoice.REASON_CATEGORY_CHANGE,
            metadata=metadata,
            lines=_swap_lines(add=new, remove=old),
            invoice_status=StagingInvoice.STATUS_AUTHORISED if completed else StagingInvoice.STATUS_DRAFT,
            sync_status=sync_status,
            payment_spec=PaymentSpec(
                amount_paid=diff,
                reference=payment.stripe_payment_intent_id or f"Category change {str(user_registration.id)[:8]}",
                sync_status=sync_status,
            ),
        )

    if diff < 0:
        if refund is None:
            raise StagingError("A downgrade needs the refund that returned the difference")

        completed = refund.status == Refund.STATUS_COMPLETED
        sync_status = StagingInvoice.SYNC_PENDING if completed else StagingInvoice.SYNC_STAGED
        return _persist(
            user=user_registration.user,
            payment=refund.payment,
            refund=refund,
            reason=StagingInvoice.REASON_CATEGORY_CHANGE,
            metadata=metadata,
            lines=_swap_lines(add=old, remove=new, add_prefix="Credit", remove_prefix="New category"),
            invoice_type=StagingInvoice.TYPE_CREDIT_NOTE,
            invoice_status=StagingInvoice.STATUS_AUTHORISED if completed else StagingInvoice.STATUS_DRAFT,
            sync_status=sync_status,
            payment_spec=PaymentSpec(
                amount_paid=diff,
                reference=f"Refund {str(refund.id)[:8]}",
                sync_status=sync_status,
            ),
        )

    both_free = old.gross == 0 and new.gross == 0
    same_codes = old.account_code == new.account_code and old.discount_account_code == new.discount_account_code
    if both_free or same_codes:
        return None

    # reverse old charge, reverse old discount, apply new charge, apply new discount
    swap = _swap_lines(add=new, remove=old, always_four=True)
    lines = swap[2:] + swap[:2]

    return _persist(
        user=user_registration.user,
        payment=user_registration.payment,
        reason=StagingInvoice.REASON_CATEGORY_CHANGE,
        metadata=metadata,
        lines=lines,
        invoice_status=StagingInvoice.STATUS_AUTHORISED,
        sync_status=StagingInvoice.SYNC_PENDING,
    )

# payments/services/refund_service.py

"""
======================================================
PATH: payments/services/refund_service.py
======================================================
REFUND SERVICE (ADMIN-DRIVEN)

Flow:
1) preview_refund  -> numbers + credit-note lines, nothing persisted
2) stage_refund    -> Refund(staged) + credit-note staging (staged)
3) confirm_refund  -> Stripe refund; staging goes pending once money moved
   cancel_refund   -> Refund(ignore) + staging ignore

Rules:
- only completed payments are refundable
- available = final_amount - SUM(refunds pending|processing|completed)
- zero-amount refunds complete synchronously (no Stripe call)
- a Stripe failure marks the refund failed and its staging ignore, so no
  credit note is ever sent for money that did not move
"""

from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction
from django.utils import timezone

from accounting.services import staging_manager
from discounts.services.discount_limit import (
    DiscountLimitError,
    check_seasonal_discount_limit,
    record_usage,
    resolve_active_code,
)
from payments.models import Payment, Refund
from payments.services import stripe_gateway
from payments.services.exceptions import (
    PaymentGatewayError,
    RefundAmountError,
    RefundError,
    RefundNotAllowedError,
    RefundStateError,
)

logger = logging.getLogger(__name__)

STRIPE_REFUND_SUCCEEDED = "succeeded"
STRIPE_REFUND_PENDING = ("pending", "requires_action")
STRIPE_REFUND_FAILED = ("failed", "canceled")


# ============================================================
# AMOUNTS
# ============================================================


def _require_refundable(payment: Payment) -> None:
    if payment.status != Payment.STATUS_COMPLETED:
        raise RefundNotAllowedError(f"Payment is {payment.status}; only completed payments can be refunded")


def _discount_amount(*, payment: Payment, discount_code, available: int) -> tuple[int, dict]:
    requested = discount_code.discount_for(payment.final_amount)
    limit = check_seasonal_discount_limit(
        user=payment.user,
        discount_code=discount_code,
        season=staging_manager.season_for_payment(payment),
        requested=requested,
    )
    applied = min(limit.final_amount, available)
    info = {
        "code": discount_code.code,
        "category": discount_code.category.name,
        "percentage": discount_code.percentage,
        "requested": requested,
        "applied": applied,
        "is_partial": limit.is_partial or applied < requested,
        "message": limit.message,
    }
    return applied, info


def resolve_refund_amount(
    *,
    payment: Payment,
    refund_type: str,
    amount: Optional[int] = None,
    discount_code: Optional[str] = None,
):
    """Returns (amount, discount_code_obj, discount_info)."""
    _require_refundable(payment)
    available = payment.refundable_amount()

    if refund_type == Refund.TYPE_PROPORTIONAL:
        # Free purchases can only be reversed with a zero refund.
        free = payment.final_amount == 0
        if amount is None or amount < 0 or (amount == 0 and not free):
            raise RefundAmountError("Refund amount must be greater than zero")
        if amount > available:
            raise RefundAmountError(f"Refund amount {amount} exceeds refundable balance {available}")
        return amount, None, None

    if refund_type == Refund.TYPE_DISCOUNT_CODE:
        try:
            code = resolve_active_code(discount_code or "")
        except DiscountLimitError as exc:
            raise RefundError(str(exc)) from exc

        applied, info = _discount_amount(payment=payment, discount_code=code, available=available)
        if applied <= 0:
            raise RefundAmountError(info["message"] or "Nothing left to refund for this discount")
        return applied, code, info

    raise RefundError(f"Unknown refund type: {refund_type}")


def preview_refund(
    *,
    payment: Payment,
    refund_type: str,
    amount: Optional[int] = None,
    discount_code: Optional[str] = None,
) -> dict:
    total, code, discount_info = resolve_refund_amount(
        payment=payment,
        refund_type=refund_type,
        amount=amount,
        discount_code=discount_code,
    )
    lines = staging_manager.preview_refund_lines(
        payment=payment,
        refund_type=refund_type,
        amount=total,
        discount_code=code,
    )
    return {
        "refund_type": refund_type,
        "total_amount": total,
        "line_items": lines,
        "payment_info": {
            "id": str(payment.id),
            "final_amount": payment.final_amount,
            "refunded_amount": payment.refunded_amount(),
            "available_amount": payment.refundable_amount(),
            "stripe_payment_intent_id": payment.stripe_payment_intent_id,
        },
        "discount_info": discount_info,
    }


# ============================================================
# STAGE / CONFIRM / CANCEL
# ============================================================


@transaction.atomic
def stage_refund(
    *,
    payment: Payment,
    refund_type: str,
    user,
    amount: Optional[int] = None,
    discount_code: Optional[str] = None,
    reason: str = "",
) -> Refund:
    payment = Payment.objects.select_for_update().get(pk=payment.pk)
    total, code, _ = resolve_refund_amount(
        payment=payment,
        refund_type=refund_type,
        amount=amount,
        discount_code=discount_code,
    )

    refund = Refund.objects.create(
        payment=payment,
        user=payment.user,
        amount=total,
        refund_type=refund_type,
        reason=reason or "",
        discount_code=code,
        processed_by=user,
    )

    if refund_type == Refund.TYPE_DISCOUNT_CODE:
        staging_manager.stage_discount_credit_note(refund=refund, discount_code=code)
    else:
        staging_manager.stage_proportional_credit_note(refund=refund)

    logger.info(
        "Refund staged",
        extra={"refund_id": str(refund.id), "payment_id": str(payment.id), "amount": total, "type": refund_type},
    )
    return refund


def _reverse_discount_usage(refund: Refund) -> None:
    """Discount refunds that never happened hand their cap usage back (append-only)."""
    if refund.refund_type != Refund.TYPE_DISCOUNT_CODE or refund.discount_code is None:
        return
    usage = refund.discount_usage.order_by("used_at").first()
    if usage is None:
        return
    record_usage(
        user=usage.user,
        discount_code=usage.discount_code,
        season=usage.season,
        amount_saved=-usage.amount_saved,
        registration=usage.registration,
        refund=refund,
    )


@transaction.atomic
def complete_refund(*, refund: Refund, stripe_refund_id: str = "") -> Refund:
    """Idempotent: called from confirm_refund and from the charge.refunded webhook."""
    refund = Refund.objects.select_for_update().select_related("payment").get(pk=refund.pk)
    if refund.status == Refund.STATUS_COMPLETED:
        return refund
    if refund.status in (Refund.STATUS_FAILED, Refund.STATUS_IGNORE):
        raise RefundStateError(f"Refund {refund.id} is {refund.status}")

    refund.status = Refund.STATUS_COMPLETED
    refund.completed_at = timezone.now()
    if stripe_refund_id:
        refund.stripe_refund_id = stripe_refund_id
    refund.save(update_fields=["status", "completed_at", "stripe_refund_id", "updated_at"])

    staging_manager.mark_refund_staging_ready(refund=refund)

    payment = Payment.objects.select_for_update().get(pk=refund.payment_id)
    if payment.status == Payment.STATUS_COMPLETED and payment.refunded_amount() >= payment.final_amount:
        payment.status = Payment.STATUS_REFUNDED
        payment.save(update_fields=["status", "updated_at"])

    logger.info("Refund completed", extra={"refund_id": str(refund.id), "stripe_refund_id": refund.stripe_refund_id})
    return refund


@transaction.atomic
def fail_refund(*, refund: Refund, error: str) -> Refund:
    refund = Refund.objects.select_for_update().get(pk=refund.pk)
    if refund.status in (Refund.STATUS_FAILED, Refund.STATUS_COMPLETED):
        return refund

    refund.status = Refund.STATUS_FAILED
    refund.failure_reason = error[:2000]
    refund.save(update_fields=["status", "failure_reason", "updated_at"])

    staging_manager.cancel_refund_staging(refund=refund, error=f"Refund failed: {error}"[:2000])
    _reverse_discount_usage(refund)

    logger.warning("Refund failed", extra={"refund_id": str(refund.id), "error": error})
    return refund


def _start_processing(*, refund: Refund, user, reason: Optional[str]) -> Refund:
    with transaction.atomic():
        refund = Refund.objects.select_for_update().select_related("payment").get(pk=refund.pk)
        if refund.status != Refund.STATUS_STAGED:
            raise RefundStateError(f"Only staged refunds can be confirmed (refund is {refund.status})")

        payment = Payment.objects.select_for_update().get(pk=refund.payment_id)
        _require_refundable(payment)
        if refund.amount > payment.refundable_amount():
            raise RefundAmountError("Refund exceeds the payment's refundable balance")

        refund.status = Refund.STATUS_PROCESSING
        refund.processed_by = user
        if reason:
            refund.reason = reason
        refund.save(update_fields=["status", "processed_by", "reason", "updated_at"])
    return refund


def submit_to_stripe(*, refund: Refund, user) -> Refund:
    """Issue the Stripe refund for a processing refund and apply the result."""
    staging = getattr(refund, "staging_invoice", None)
    try:
        result = stripe_gateway.create_refund(
            payment_intent_id=refund.payment.stripe_payment_intent_id,
            amount=refund.amount,
            metadata={
                "refund_id": str(refund.id),
                "staging_id": str(staging.id) if staging else "",
                "processed_by": str(user.pk) if user else "",
            },
        )
    except PaymentGatewayError as exc:
        fail_refund(refund=refund, error=str(exc))
        raise

    stripe_status = result.get("status")
    if stripe_status == STRIPE_REFUND_SUCCEEDED:
        return complete_refund(refund=refund, stripe_refund_id=result["id"])

    if stripe_status in STRIPE_REFUND_FAILED:
        fail_refund(refund=refund, error=result.get("failure_reason") or f"Stripe refund {stripe_status}")
        raise PaymentGatewayError(f"Stripe refund {stripe_status}")

    # pending: the charge.refunded / refund.updated webhook finishes it
    refund.status = Refund.STATUS_PENDING
    refund.stripe_refund_id = result["id"]
    refund.save(update_fields=["status", "stripe_refund_id", "updated_at"])
    logger.info("Refund pending at Stripe", extra={"refund_id": str(refund.id), "stripe_refund_id": result["id"]})
    return refund


def confirm_refund(*, refund: Refund, user, reason: Optional[str] = None) -> Refund:
    refund = _start_processing(refund=refund, user=user, reason=reason)

    if refund.amount == 0:
        return complete_refund(refund=refund)

    if not refund.payment.stripe_payment_intent_id:
        fail_refund(refund=refund, error="Payment has no Stripe payment intent")
        raise RefundNotAllowedError("Payment has no Stripe payment intent to refund")

    return submit_to_stripe(refund=refund, user=user)


@transaction.atomic
def cancel_refund(*, refund: Refund, user) -> Refund:
    refund = Refund.objects.select_for_update().get(pk=refund.pk)
    if refund.status != Refund.STATUS_STAGED:
        raise RefundStateError(f"Only staged refunds can be cancelled (refund is {refund.status})")

    refund.status = Refund.STATUS_IGNORE
    refund.processed_by = user
    refund.save(update_fields=["status", "processed_by", "updated_at"])

    staging_manager.cancel_refund_staging(refund=refund, error="Refund cancelled")
    _reverse_discount_usage(refund)

    logger.info("Refund cancelled", extra={"refund_id": str(refund.id)})
    return refund

# payments/services/webhook_service.py

"""
======================================================
PATH: payments/services/webhook_service.py
======================================================
STRIPE WEBHOOK PROCESSING

Events handled:
- payment_intent.succeeded       -> domain record paid, Payment completed,
                                    then staging (promote or create)
- payment_intent.payment_failed  -> Payment/registration failed, drafts discarded
- charge.refunded / refund.updated -> local Refund completed (or failed)

Every handler is idempotent: Stripe redelivers events, and a redelivery
must leave exactly one domain record and at most one staging invoice.
"""

from __future__ import annotations

import logging
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import transaction

from accounting.models import StagingInvoice
from accounting.services import staging_manager, xero_adapter
from accounting.services.exceptions import AccountingServiceError
from accounting.services.tenant import resolve_tenant
from discounts.services.discount_limit import record_usage
from payments.models import Payment, Refund
from payments.services import refund_service, stripe_gateway
from payments.services.exceptions import RefundStateError, WebhookProcessingError
from registrations.models import Membership, UserRegistration
from registrations.services.memberships import grant_membership

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"

# A refunded payment never goes back to completed on redelivery.
COMPLETABLE_STATUSES = (Payment.STATUS_PENDING, Payment.STATUS_PROCESSING, Payment.STATUS_FAILED)


def _metadata(obj) -> dict:
    return dict(obj.get("metadata") or {})


def _int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _payment_for_intent(intent, metadata: dict) -> Payment:
    """Local Payment for an intent; recreated from the event if checkout never saved it."""
    payment = Payment.objects.select_for_update().filter(stripe_payment_intent_id=intent["id"]).first()
    if payment:
        return payment

    payment_id = metadata.get("paymentId")
    if payment_id:
        payment = Payment.objects.select_for_update().filter(id=payment_id).first()
        if payment:
            payment.stripe_payment_intent_id = intent["id"]
            payment.save(update_fields=["stripe_payment_intent_id", "updated_at"])
            return payment

    user = get_user_model().objects.filter(id=metadata.get("userId")).first()
    if user is None:
        raise WebhookProcessingError(f"Payment intent {intent['id']} has no known user")

    amount = _int(intent.get("amount_received") or intent.get("amount"))
    discount = _int(metadata.get("discountAmount"))
    logger.warning("Payment row missing for intent; creating it", extra={"payment_intent_id": intent["id"]})
    return Payment.objects.create(
        user=user,
        total_amount=amount + discount,
        discount_amount=discount,
        final_amount=amount,
        stripe_payment_intent_id=intent["id"],
        metadata=metadata,
    )


def _charge_id(intent) -> str:
    latest = intent.get("latest_charge")
    if isinstance(latest, str):
        return latest
    if latest:
        return latest.get("id") or ""
    return ""


# ============================================================
# payment_intent.succeeded
# ============================================================


def _apply_membership(intent, metadata: dict) -> tuple[Payment, object, bool]:
    with transaction.atomic():
        payment = _payment_for_intent(intent, metadata)
        membership = Membership.objects.filter(id=metadata.get("membershipId")).first()
        if membership is None:
            raise WebhookProcessingError(f"Unknown membership {metadata.get('membershipId')}")

        months = _int(metadata.get("durationMonths"), 1)
        row, created = grant_membership(
            user=payment.user,
            membership=membership,
            months=months,
            payment=payment,
            payment_intent_id=intent["id"],
        )

        if payment.status in COMPLETABLE_STATUSES:
            payment.mark_completed(charge_id=_charge_id(intent))
        if row.payment_id is None:
            row.payment = payment
            row.save(update_fields=["payment"])

    return payment, row, created


def _apply_registration(intent, metadata: dict) -> tuple[Payment, UserRegistration, bool]:
    with transaction.atomic():
        payment = _payment_for_intent(intent, metadata)
        entry = (
            UserRegistration.objects.select_for_update()
            .select_related("registration__season", "discount_code__category")
            .filter(user_id=metadata.get("userId"), registration_id=metadata.get("registrationId"))
            .first()
        )
        if entry is None:
            raise WebhookProcessingError(
                f"No registration for user {metadata.get('userId')} / {metadata.get('registrationId')}"
            )

        if payment.status in COMPLETABLE_STATUSES:
            payment.mark_completed(charge_id=_charge_id(intent))

        if entry.payment_status == UserRegistration.STATUS_PAID:
            return payment, entry, False

        entry.payment_status = UserRegistration.STATUS_PAID
        entry.amount_paid = payment.final_amount
        entry.payment = payment
        entry.reservation_expires_at = None
        if not entry.registered_at:
            entry.registered_at = payment.completed_at
        entry.save(
            update_fields=[
                "payment_status",
                "amount_paid",
                "payment",
                "reservation_expires_at",
                "registered_at",
                "updated_at",
            ]
        )

        if entry.discount_code_id and entry.discount_amount > 0:
            record_usage(
                user=entry.user,
                discount_code=entry.discount_code,
                season=entry.registration.season,
                amount_saved=entry.discount_amount,
                registration=entry.registration,
            )

    return payment, entry, True


def _prestaged_invoice(metadata: dict) -> Optional[StagingInvoice]:
    staging_id = metadata.get("stagingRecordId")
    if not staging_id:
        return None
    return StagingInvoice.objects.filter(id=staging_id).first()


def handle_payment_succeeded(intent) -> str:
    metadata = _metadata(intent)

    if metadata.get("categoryChange"):
        # Category-change charges are confirmed synchronously by the admin flow.
        return OUTCOME_IGNORED

    if metadata.get("membershipId"):
        payment, row, created = _apply_membership(intent, metadata)
        updates = {"user_membership_id": str(row.id)}

        def stage():
            return staging_manager.stage_membership_purchase(
                user=payment.user,
                membership=row.membership,
                months=row.months_purchased,
                payment=payment,
                user_membership=row,
            )

    elif metadata.get("registrationId"):
        payment, row, created = _apply_registration(intent, metadata)
        updates = None

        def stage():
            return staging_manager.stage_registration_purchase(row, payment)

    else:
        logger.info("Payment intent without purchase metadata", extra={"payment_intent_id": intent["id"]})
        return OUTCOME_IGNORED

    # Only now that the payment row is final does accounting get staged.
    prestaged = _prestaged_invoice(metadata)
    if prestaged is not None and prestaged.sync_status == StagingInvoice.SYNC_STAGED:
        staging_manager.promote_to_pending(invoice=prestaged, payment=payment, metadata_updates=updates)
    elif prestaged is None:
        stage()

    logger.info(
        "Payment succeeded processed",
        extra={"payment_intent_id": intent["id"], "payment_id": str(payment.id), "record_created": created},
    )
    return OUTCOME_PROCESSED if created else OUTCOME_DUPLICATE


# ============================================================
# payment_intent.payment_failed
# ============================================================


def _delete_remote_drafts(drafts: list[tuple[str, str]]) -> None:
    for tenant_id, xero_invoice_id in drafts:
        try:
            ctx = resolve_tenant(tenant_id or None)
            xero_adapter.delete_draft_invoice(ctx, xero_invoice_id)
        except AccountingServiceError as exc:
            logger.warning(
                "Could not delete remote draft invoice",
                extra={"xero_invoice_id": xero_invoice_id, "error": str(exc)},
            )


def handle_payment_failed(intent) -> str:
    metadata = _metadata(intent)
    error = (intent.get("last_payment_error") or {}).get("message") or "Payment failed"

    with transaction.atomic():
        payment = Payment.objects.select_for_update().filter(stripe_payment_intent_id=intent["id"]).first()
        if payment is None:
            logger.warning("Failure for unknown payment intent", extra={"payment_intent_id": intent["id"]})
            return OUTCOME_IGNORED

        if payment.status in (Payment.STATUS_COMPLETED, Payment.STATUS_REFUNDED):
            logger.warning("Ignoring failure for settled payment", extra={"payment_id": str(payment.id)})
            return OUTCOME_IGNORED

        payment.status = Payment.STATUS_FAILED
        payment.metadata = {**payment.metadata, "failure_reason": error}
        payment.save(update_fields=["status", "metadata", "updated_at"])

        UserRegistration.objects.filter(
            payment=payment,
            payment_status__in=[UserRegistration.STATUS_AWAITING_PAYMENT, UserRegistration.STATUS_PROCESSING],
        ).update(payment_status=UserRegistration.STATUS_FAILED, reservation_expires_at=None)

        drafts = staging_manager.discard_abandoned_drafts(payment=payment)

    if metadata.get("xeroInvoiceId"):
        drafts.append(("", metadata["xeroInvoiceId"]))
    _delete_remote_drafts(drafts)

    logger.info("Payment failure processed", extra={"payment_id": str(payment.id), "error": error})
    return OUTCOME_PROCESSED


# ============================================================
# Refund confirmations
# ============================================================


def apply_stripe_refund(stripe_refund) -> str:
    local_id = _metadata(stripe_refund).get("refund_id")
    if not local_id:
        return OUTCOME_IGNORED

    refund = Refund.objects.filter(id=local_id).first()
    if refund is None:
        logger.warning("Stripe refund for unknown local refund", extra={"refund_id": local_id})
        return OUTCOME_IGNORED

    stripe_status = stripe_refund.get("status")
    if stripe_status == refund_service.STRIPE_REFUND_SUCCEEDED:
        if refund.status == Refund.STATUS_COMPLETED:
            return OUTCOME_DUPLICATE
        try:
            refund_service.complete_refund(refund=refund, stripe_refund_id=stripe_refund.get("id") or "")
        except RefundStateError as exc:
            logger.warning("Refund confirmation ignored", extra={"refund_id": local_id, "error": str(exc)})
            return OUTCOME_IGNORED
        return OUTCOME_PROCESSED

    if stripe_status in refund_service.STRIPE_REFUND_FAILED:
        refund_service.fail_refund(refund=refund, error=stripe_refund.get("failure_reason") or stripe_status)
        return OUTCOME_PROCESSED

    return OUTCOME_IGNORED


def handle_charge_refunded(charge) -> str:
    refunds = (charge.get("refunds") or {}).get("data") or []
    outcomes = [apply_stripe_refund(item) for item in refunds]
    if OUTCOME_PROCESSED in outcomes:
        return OUTCOME_PROCESSED
    return OUTCOME_DUPLICATE if outcomes else OUTCOME_IGNORED


HANDLERS = {
    "payment_intent.succeeded": handle_payment_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
    "charge.refunded": handle_charge_refunded,
    "refund.updated": apply_stripe_refund,
}


def handle_event(event) -> str:
    event = stripe_gateway.as_dict(event)
    event_type = event["type"]
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled Stripe event type", extra={"event_type": event_type})
        return OUTCOME_IGNORED

    obj = event["data"]["object"]
    logger.info("Processing Stripe event", extra={"event_type": event_type, "event_id": event.get("id")})
    return handler(obj)

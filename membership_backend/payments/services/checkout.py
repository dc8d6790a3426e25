# payments/services/checkout.py

"""
======================================================
PATH: payments/services/checkout.py
======================================================
MEMBER CHECKOUT

Creates everything a Stripe payment needs before the member pays:
- reservation (UserRegistration awaiting_payment, expiring) or nothing for
  memberships (granted by the webhook)
- Payment (pending) with the capped discount applied
- purchase-time staging (DRAFT / staged), promoted by the webhook
- Stripe PaymentIntent carrying the metadata the webhook dispatches on

Zero-amount checkouts complete immediately (method=free) and stage a
zero-value AUTHORISED invoice.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounting.models import StagingInvoice
from accounting.services import staging_manager
from discounts.services.discount_limit import (
    DiscountLimitError,
    check_seasonal_discount_limit,
    record_usage,
    resolve_active_code,
)
from payments.models import Payment
from payments.services import stripe_gateway
from payments.services.exceptions import CheckoutError, PaymentGatewayError
from registrations.models import Membership, RegistrationCategory, UserRegistration
from registrations.services.capacity import has_capacity
from registrations.services.memberships import grant_membership

logger = logging.getLogger(__name__)

MAX_MEMBERSHIP_MONTHS = 12


def _reservation_expiry():
    return timezone.now() + timedelta(minutes=settings.REGISTRATION_RESERVATION_MINUTES)


def _apply_discount(*, user, code: Optional[str], amount: int, season) -> tuple[int, object, dict]:
    if not code:
        return 0, None, {}
    try:
        discount_code = resolve_active_code(code)
    except DiscountLimitError as exc:
        raise CheckoutError(str(exc)) from exc

    limit = check_seasonal_discount_limit(
        user=user,
        discount_code=discount_code,
        season=season,
        requested=discount_code.discount_for(amount),
    )
    info = {
        "code": discount_code.code,
        "requested": limit.original_amount,
        "applied": limit.final_amount,
        "is_partial": limit.is_partial,
        "message": limit.message,
    }
    return limit.final_amount, (discount_code if limit.final_amount > 0 else None), info


def _attach_intent(*, payment: Payment, staging: StagingInvoice, metadata: dict, description: str) -> dict:
    """Create the PaymentIntent and write its id back onto payment + staging."""
    metadata = {**metadata, "paymentId": str(payment.id), "stagingRecordId": str(staging.id)}
    try:
        intent = stripe_gateway.create_payment_intent(
            amount=payment.final_amount,
            customer_id=payment.user.stripe_customer_id,
            metadata=metadata,
            description=description,
        )
    except PaymentGatewayError as exc:
        with transaction.atomic():
            payment.status = Payment.STATUS_FAILED
            payment.save(update_fields=["status", "updated_at"])
            UserRegistration.objects.filter(payment=payment).update(
                payment_status=UserRegistration.STATUS_FAILED,
                reservation_expires_at=None,
            )
            staging_manager.discard_abandoned_drafts(payment=payment)
        raise CheckoutError(f"Could not start payment: {exc}") from exc

    with transaction.atomic():
        payment.stripe_payment_intent_id = intent["id"]
        payment.metadata = metadata
        payment.save(update_fields=["stripe_payment_intent_id", "metadata", "updated_at"])

        staging.metadata = {**staging.metadata, "stripe_payment_intent_id": intent["id"]}
        staging.save(update_fields=["metadata", "updated_at"])
        staging.payments.update(reference=intent["id"])

    return {
        "client_secret": intent.get("client_secret"),
        "payment_intent_id": intent["id"],
    }


# ============================================================
# REGISTRATIONS
# ============================================================


def start_registration_checkout(*, user, category: RegistrationCategory, discount_code: Optional[str] = None) -> dict:
    registration = category.registration

    with transaction.atomic():
        category = RegistrationCategory.objects.select_for_update().select_related("registration__season").get(
            pk=category.pk
        )
        entry = UserRegistration.objects.select_for_update().filter(user=user, registration=registration).first()
        if entry and entry.payment_status in (UserRegistration.STATUS_PAID, UserRegistration.STATUS_PROCESSING):
            raise CheckoutError("You are already registered for this registration")

        if not has_capacity(category, exclude_user=user):
            raise CheckoutError(f"Category '{category.name}' is full")

        discount, code_obj, discount_info = _apply_discount(
            user=user,
            code=discount_code,
            amount=category.price,
            season=registration.season,
        )
        final = category.price - discount

        payment = Payment.objects.create(
            user=user,
            total_amount=category.price,
            discount_amount=discount,
            final_amount=final,
            payment_method=Payment.METHOD_FREE if final == 0 else Payment.METHOD_STRIPE,
        )

        entry = entry or UserRegistration(user=user, registration=registration)
        entry.registration_category = category
        entry.payment_status = UserRegistration.STATUS_AWAITING_PAYMENT
        entry.registration_fee = category.price
        entry.discount_amount = discount
        entry.discount_code = code_obj
        entry.amount_paid = 0
        entry.payment = payment
        entry.reservation_expires_at = _reservation_expiry()
        entry.save()

        if final == 0:
            payment.mark_completed()
            entry.payment_status = UserRegistration.STATUS_PAID
            entry.reservation_expires_at = None
            entry.registered_at = timezone.now()
            entry.save(update_fields=["payment_status", "reservation_expires_at", "registered_at", "updated_at"])
            if code_obj is not None:
                record_usage(
                    user=user,
                    discount_code=code_obj,
                    season=registration.season,
                    amount_saved=discount,
                    registration=registration,
                )
            staging = staging_manager.stage_registration_purchase(entry, payment)
            logger.info("Free registration completed", extra={"user_registration_id": str(entry.id)})
            return {
                "status": "completed",
                "amount": 0,
                "payment_id": str(payment.id),
                "user_registration_id": str(entry.id),
                "staging_id": str(staging.id),
                "discount": discount_info or None,
            }

        staging = staging_manager.stage_registration_purchase(entry, payment)

    metadata = {
        "userId": str(user.pk),
        "registrationId": str(registration.id),
        "categoryId": str(category.id),
    }
    if code_obj is not None:
        metadata.update(
            {
                "discountCode": code_obj.code,
                "discountAmount": str(discount),
                "discountCategoryId": str(code_obj.category_id),
            }
        )

    intent = _attach_intent(
        payment=payment,
        staging=staging,
        metadata=metadata,
        description=f"{registration.name} - {category.name}",
    )
    logger.info(
        "Registration checkout started",
        extra={"user_registration_id": str(entry.id), "payment_intent_id": intent["payment_intent_id"]},
    )
    return {
        "status": "requires_payment",
        "amount": final,
        "payment_id": str(payment.id),
        "user_registration_id": str(entry.id),
        "staging_id": str(staging.id),
        "discount": discount_info or None,
        **intent,
    }


# ============================================================
# MEMBERSHIPS
# ============================================================


def start_membership_checkout(*, user, membership: Membership, months: int) -> dict:
    if months < 1 or months > MAX_MEMBERSHIP_MONTHS:
        raise CheckoutError(f"Membership duration must be between 1 and {MAX_MEMBERSHIP_MONTHS} months")
    if not membership.is_active:
        raise CheckoutError("Membership is not available")

    total = membership.price_monthly * months

    with transaction.atomic():
        payment = Payment.objects.create(
            user=user,
            total_amount=total,
            final_amount=total,
            payment_method=Payment.METHOD_FREE if total == 0 else Payment.METHOD_STRIPE,
        )

        if total == 0:
            payment.mark_completed()
            row, _ = grant_membership(
                user=user,
                membership=membership,
                months=months,
                payment=payment,
                payment_intent_id=None,
            )
            staging = staging_manager.stage_membership_purchase(
                user=user,
                membership=membership,
                months=months,
                payment=payment,
                user_membership=row,
            )
            return {
                "status": "completed",
                "amount": 0,
                "payment_id": str(payment.id),
                "user_membership_id": str(row.id),
                "staging_id": str(staging.id),
            }

        staging = staging_manager.stage_membership_purchase(
            user=user,
            membership=membership,
            months=months,
            payment=payment,
        )

    intent = _attach_intent(
        payment=payment,
        staging=staging,
        metadata={
            "userId": str(user.pk),
            "membershipId": str(membership.id),
            "durationMonths": str(months),
        },
        description=f"{membership.name} ({months} month{'s' if months != 1 else ''})",
    )
    return {
        "status": "requires_payment",
        "amount": total,
        "payment_id": str(payment.id),
        "staging_id": str(staging.id),
        **intent,
    }

# payments/services/category_change.py

"""
CATEGORY CHANGE (ADMIN)

Moves a paid registration to another category of the same registration.
Prices are compared net of discount (the member's code is re-applied to the
new price):

- diff > 0  -> off-session charge for diff, upgrade staging (pending)
- diff < 0  -> Stripe refund for |diff|, credit-note staging
- diff == 0 -> category swapped; net-zero staging only if codes differ
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from accounting.services import staging_manager
from payments.models import Payment, Refund
from payments.services import refund_service, stripe_gateway
from payments.services.exceptions import CategoryChangeError, PaymentGatewayError
from registrations.models import RegistrationCategory, UserRegistration
from registrations.services.capacity import has_capacity

logger = logging.getLogger(__name__)


def _validate(user_registration: UserRegistration, new_category: RegistrationCategory, reason: str) -> None:
    if not (reason or "").strip():
        raise CategoryChangeError("A reason is required for a category change")
    if user_registration.payment_status != UserRegistration.STATUS_PAID:
        raise CategoryChangeError("Only paid registrations can change category")
    if new_category.pk == user_registration.registration_category_id:
        raise CategoryChangeError("Registration is already in this category")
    if new_category.registration_id != user_registration.registration_id:
        raise CategoryChangeError("New category belongs to a different registration")
    if not has_capacity(new_category, exclude_user=user_registration.user):
        raise CategoryChangeError(f"Category '{new_category.name}' is full")


def _new_discount(user_registration: UserRegistration, new_category: RegistrationCategory) -> int:
    code = user_registration.discount_code
    if code is None or user_registration.discount_amount <= 0:
        return 0
    return min(code.discount_for(new_category.price), new_category.price)


def _apply_new_category(entry: UserRegistration, new_category, *, new_discount: int, paid_delta: int) -> None:
    entry.registration_category = new_category
    entry.registration_fee = new_category.price
    entry.discount_amount = new_discount
    entry.amount_paid = max(0, entry.amount_paid + paid_delta)
    entry.save(
        update_fields=["registration_category", "registration_fee", "discount_amount", "amount_paid", "updated_at"]
    )


def _charge_upgrade(entry: UserRegistration, new_category, *, diff: int, new_discount: int, reason: str) -> dict:
    member = entry.user
    staging_manager.require_category_change_codes(
        user_registration=entry,
        new_category=new_category,
        new_discount_amount=new_discount,
        new_discount_code=entry.discount_code if new_discount else None,
    )

    try:
        intent = stripe_gateway.charge_saved_method(
            amount=diff,
            customer_id=member.stripe_customer_id,
            payment_method_id=member.stripe_payment_method_id,
            metadata={
                "userId": str(member.pk),
                "registrationId": str(entry.registration_id),
                "userRegistrationId": str(entry.id),
                "categoryChange": "true",
                "newCategoryId": str(new_category.id),
            },
            description=f"Category change: {new_category.registration.name} - {new_category.name}",
        )
    except PaymentGatewayError as exc:
        raise CategoryChangeError(f"Charge failed: {exc}") from exc

    if intent.get("status") != "succeeded":
        raise CategoryChangeError(f"Charge not completed (status {intent.get('status')})")

    with transaction.atomic():
        payment = Payment.objects.create(
            user=member,
            total_amount=diff,
            final_amount=diff,
            stripe_payment_intent_id=intent["id"],
            status=Payment.STATUS_COMPLETED,
            completed_at=timezone.now(),
            metadata={"category_change": True, "user_registration_id": str(entry.id), "reason": reason},
        )
        staging = staging_manager.stage_category_change(
            user_registration=entry,
            new_category=new_category,
            new_discount_amount=new_discount,
            new_discount_code=entry.discount_code if new_discount else None,
            payment=payment,
        )
        _apply_new_category(entry, new_category, new_discount=new_discount, paid_delta=diff)

    return {"action": "charged", "amount": diff, "payment_id": str(payment.id), "staging_id": str(staging.id)}


def _refund_downgrade(entry: UserRegistration, new_category, *, diff: int, new_discount: int, reason: str, user):
    amount = -diff
    if entry.payment_id is None or not entry.payment.stripe_payment_intent_id:
        raise CategoryChangeError("Registration has no Stripe payment to refund against")

    with transaction.atomic():
        original = Payment.objects.select_for_update().get(pk=entry.payment_id)
        if original.refundable_amount() < amount:
            raise CategoryChangeError("Refund exceeds the payment's refundable balance")

        refund = Refund.objects.create(
            payment=original,
            user=entry.user,
            amount=amount,
            refund_type=Refund.TYPE_PROPORTIONAL,
            reason=f"Category change: {reason}",
            status=Refund.STATUS_PENDING,
            processed_by=user,
        )
        staging = staging_manager.stage_category_change(
            user_registration=entry,
            new_category=new_category,
            new_discount_amount=new_discount,
            new_discount_code=entry.discount_code if new_discount else None,
            refund=refund,
        )
        refund.status = Refund.STATUS_PROCESSING
        refund.save(update_fields=["status", "updated_at"])

    try:
        refund = refund_service.submit_to_stripe(refund=refund, user=user)
    except PaymentGatewayError as exc:
        raise CategoryChangeError(f"Refund failed: {exc}") from exc

    _apply_new_category(entry, new_category, new_discount=new_discount, paid_delta=diff)
    return {
        "action": "refunded",
        "amount": amount,
        "refund_id": str(refund.id),
        "refund_status": refund.status,
        "staging_id": str(staging.id),
    }


def change_category(*, user_registration: UserRegistration, new_category: RegistrationCategory, reason: str, user) -> dict:
    entry = UserRegistration.objects.select_related(
        "user",
        "registration",
        "registration_category__registration",
        "discount_code__category",
        "payment",
    ).get(pk=user_registration.pk)
    _validate(entry, new_category, reason)

    new_discount = _new_discount(entry, new_category)
    old_net = entry.registration_fee - entry.discount_amount
    new_net = new_category.price - new_discount
    diff = new_net - old_net

    logger.info(
        "Category change requested",
        extra={
            "user_registration_id": str(entry.id),
            "old_category_id": str(entry.registration_category_id),
            "new_category_id": str(new_category.id),
            "price_difference": diff,
        },
    )

    if diff > 0:
        return _charge_upgrade(entry, new_category, diff=diff, new_discount=new_discount, reason=reason)
    if diff < 0:
        return _refund_downgrade(entry, new_category, diff=diff, new_discount=new_discount, reason=reason, user=user)

    with transaction.atomic():
        staging = staging_manager.stage_category_change(
            user_registration=entry,
            new_category=new_category,
            new_discount_amount=new_discount,
            new_discount_code=entry.discount_code if new_discount else None,
        )
        _apply_new_category(entry, new_category, new_discount=new_discount, paid_delta=0)

    return {"action": "updated", "amount": 0, "staging_id": str(staging.id) if staging else None}

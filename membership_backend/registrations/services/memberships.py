# registrations/services/memberships.py

from __future__ import annotations

import calendar
import logging
from datetime import date
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from registrations.models import Membership, UserMembership

logger = logging.getLogger(__name__)


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def membership_start_for(user, membership: Membership, *, today: Optional[date] = None) -> date:
    """New purchases extend from the latest still-valid period, else start today."""
    today = today or timezone.localdate()
    current = (
        UserMembership.objects.filter(
            user=user,
            membership=membership,
            payment_status=UserMembership.STATUS_PAID,
            valid_until__gte=today,
        )
        .order_by("-valid_until")
        .first()
    )
    return current.valid_until if current else today


def grant_membership(
    *,
    user,
    membership: Membership,
    months: int,
    payment,
    payment_intent_id: Optional[str],
) -> tuple[UserMembership, bool]:
    """
    Create the UserMembership for a paid purchase.

    Idempotent on the Stripe payment intent id: a second call (webhook
    redelivery) returns the existing row and created=False.
    """
    if payment_intent_id:
        existing = UserMembership.objects.filter(stripe_payment_intent_id=payment_intent_id).first()
        if existing:
            return existing, False

    valid_from = membership_start_for(user, membership)
    try:
        with transaction.atomic():
            row = UserMembership.objects.create(
                user=user,
                membership=membership,
                valid_from=valid_from,
                valid_until=add_months(valid_from, months),
                months_purchased=months,
                amount_paid=payment.final_amount,
                payment=payment,
                stripe_payment_intent_id=payment_intent_id or None,
            )
    except IntegrityError:
        if not payment_intent_id:
            raise
        logger.info("Membership already recorded by a concurrent delivery", extra={"payment_intent_id": payment_intent_id})
        return UserMembership.objects.get(stripe_payment_intent_id=payment_intent_id), False

    logger.info(
        "Membership granted",
        extra={"user_membership_id": str(row.id), "valid_from": str(row.valid_from), "valid_until": str(row.valid_until)},
    )
    return row, True

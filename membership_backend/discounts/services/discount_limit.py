# discounts/services/discount_limit.py

"""
SEASONAL DISCOUNT LIMIT

Enforces DiscountCategory.max_discount_per_user_per_season for every flow
that hands out a discount (checkout, discount-code refunds).

Usage is read from the DiscountUsage ledger (SUM(amount_saved)).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.db.models import Sum

from discounts.models import DiscountCategory, DiscountCode, DiscountUsage

logger = logging.getLogger(__name__)


class DiscountLimitError(Exception):
    """Raised when a discount cannot be evaluated (inactive code, bad input)."""


@dataclass(frozen=True)
class SeasonalUsage:
    total_used: int
    remaining: int
    max_allowed: int


@dataclass(frozen=True)
class DiscountLimitResult:
    original_amount: int
    final_amount: int
    is_partial: bool = False
    message: str = ""
    usage: Optional[SeasonalUsage] = None


def _dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


def seasonal_usage(user, category: DiscountCategory, season) -> int:
    total = (
        DiscountUsage.objects.filter(user=user, discount_category=category, season=season)
        .aggregate(total=Sum("amount_saved"))
        .get("total")
    )
    return int(total or 0)


def check_seasonal_discount_limit(
    *,
    user,
    discount_code: DiscountCode,
    season,
    requested: int,
) -> DiscountLimitResult:
    if requested < 0:
        raise DiscountLimitError("Requested discount cannot be negative")

    category = discount_code.category
    max_allowed = category.max_discount_per_user_per_season

    if not max_allowed or max_allowed <= 0:
        return DiscountLimitResult(original_amount=requested, final_amount=requested)

    total_used = seasonal_usage(user, category, season)
    remaining = max(0, max_allowed - total_used)

    if total_used >= max_allowed:
        logger.info(
            "Seasonal discount limit reached",
            extra={
                "user_id": str(user.pk),
                "discount_code": discount_code.code,
                "total_used": total_used,
                "max_allowed": max_allowed,
            },
        )
        return DiscountLimitResult(
            original_amount=requested,
            final_amount=0,
            message=(
                f"You have already reached your {_dollars(max_allowed)} season limit "
                f"for {category.name} discounts."
            ),
            usage=SeasonalUsage(total_used=total_used, remaining=0, max_allowed=max_allowed),
        )

    if total_used + requested > max_allowed:
        logger.info(
            "Applied partial discount due to seasonal limit",
            extra={
                "user_id": str(user.pk),
                "discount_code": discount_code.code,
                "requested": requested,
                "applied": remaining,
            },
        )
        return DiscountLimitResult(
            original_amount=requested,
            final_amount=remaining,
            is_partial=True,
            message=(
                f"Applied {_dollars(remaining)} discount (you have {_dollars(remaining)} remaining "
                f"of your {_dollars(max_allowed)} {category.name} season limit). "
                f"You have already used {_dollars(total_used)} in discounts this season."
            ),
            usage=SeasonalUsage(total_used=total_used, remaining=remaining, max_allowed=max_allowed),
        )

    return DiscountLimitResult(
        original_amount=requested,
        final_amount=requested,
        usage=SeasonalUsage(total_used=total_used, remaining=remaining, max_allowed=max_allowed),
    )


def resolve_active_code(code: str) -> DiscountCode:
    normalized = (code or "").strip().upper()
    found = (
        DiscountCode.objects.select_related("category")
        .filter(code=normalized, is_active=True, category__is_active=True)
        .first()
    )
    if not found:
        raise DiscountLimitError(f"Discount code '{normalized}' is not valid")
    return found


def record_usage(
    *,
    user,
    discount_code: DiscountCode,
    season,
    amount_saved: int,
    registration=None,
    refund=None,
) -> DiscountUsage:
    """
    Append one ledger row. Registration usage is recorded once per
    (user, code, registration); later calls return the existing row.
    """
    if registration is not None and refund is None:
        existing = DiscountUsage.objects.filter(
            user=user,
            discount_code=discount_code,
            registration=registration,
            refund__isnull=True,
        ).first()
        if existing:
            return existing

    return DiscountUsage.objects.create(
        user=user,
        discount_code=discount_code,
        discount_category=discount_code.category,
        season=season,
        registration=registration,
        refund=refund,
        amount_saved=amount_saved,
    )

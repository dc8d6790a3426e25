# accounting/services/account_resolver.py

"""
PATH: accounting/services/account_resolver.py

ACCOUNT RESOLVER (AUTHORITATIVE)

This module answers ONE question:
"Which accounting code should this line (or payment) use?"

Design goals:
- deterministic
- hard-fail on missing setup for revenue/discount lines (so we never stage
  a line against the wrong account)
- soft default for the Stripe bank account (configured fallback + warning)
"""

from __future__ import annotations

import logging

from django.conf import settings

from accounting.models import SystemAccountingCode
from accounting.services.exceptions import MissingAccountingCodeError

logger = logging.getLogger(__name__)


def _require(code: str, *, what: str) -> str:
    code = (code or "").strip()
    if not code:
        raise MissingAccountingCodeError(f"Missing accounting code for {what}")
    return code


def registration_category_code(category) -> str:
    return _require(
        category.accounting_code,
        what=f"registration category '{category.registration.name} - {category.name}'",
    )


def membership_code(membership) -> str:
    return _require(membership.accounting_code, what=f"membership '{membership.name}'")


def discount_category_code(discount_category) -> str:
    return _require(discount_category.accounting_code, what=f"discount category '{discount_category.name}'")


def fallback_refund_code() -> str:
    return settings.XERO["FALLBACK_REFUND_ACCOUNT_CODE"]


def stripe_bank_account_code() -> str:
    row = SystemAccountingCode.objects.filter(code_type=SystemAccountingCode.CODE_STRIPE_BANK_ACCOUNT).first()
    if row and row.accounting_code:
        return row.accounting_code

    default = settings.XERO["DEFAULT_BANK_ACCOUNT_CODE"]
    logger.warning(
        "Stripe bank account code not configured; using default",
        extra={"default_code": default},
    )
    return default

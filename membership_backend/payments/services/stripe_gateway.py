# payments/services/stripe_gateway.py

"""
STRIPE GATEWAY

The only module that talks to the Stripe SDK.
Everything else calls these functions (and tests patch them).

All amounts are integer cents, which is what Stripe expects.
Results come back as plain dicts; SDK objects never leave this module.
"""

from __future__ import annotations

import logging
from typing import Optional

import stripe
from django.conf import settings

from payments.services.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


def _stripe_cfg() -> dict:
    return settings.PAYMENTS["STRIPE"]


def _configure() -> None:
    cfg = _stripe_cfg()
    secret = (cfg.get("SECRET_KEY") or "").strip()
    if not secret:
        raise PaymentGatewayError("Stripe SECRET_KEY is not configured")
    stripe.api_key = secret
    if cfg.get("API_VERSION"):
        stripe.api_version = cfg["API_VERSION"]


def as_dict(obj):
    """Nested plain dict for a Stripe SDK object. Dicts pass through."""
    if obj is None or isinstance(obj, dict):
        return obj
    return obj.to_dict()


def currency() -> str:
    return (_stripe_cfg().get("CURRENCY") or "usd").lower()


def construct_event(*, payload: bytes, signature: Optional[str]):
    """
    Verify the Stripe-Signature header and parse the event.
    Raises ValueError (bad payload) or stripe.SignatureVerificationError.
    """
    secret = (_stripe_cfg().get("WEBHOOK_SECRET") or "").strip()
    if not secret:
        raise PaymentGatewayError("Stripe WEBHOOK_SECRET is not configured")
    return as_dict(stripe.Webhook.construct_event(payload, signature or "", secret))


def create_payment_intent(*, amount: int, customer_id: str = "", metadata: dict, description: str = ""):
    _configure()
    params = {
        "amount": amount,
        "currency": currency(),
        "metadata": metadata,
        "automatic_payment_methods": {"enabled": True},
    }
    if customer_id:
        params["customer"] = customer_id
        params["setup_future_usage"] = "off_session"
    if description:
        params["description"] = description

    try:
        return as_dict(stripe.PaymentIntent.create(**params))
    except stripe.StripeError as exc:
        logger.error("Stripe PaymentIntent create failed", extra={"error": str(exc)})
        raise PaymentGatewayError(getattr(exc, "user_message", None) or str(exc)) from exc


def charge_saved_method(*, amount: int, customer_id: str, payment_method_id: str, metadata: dict, description: str = ""):
    """Off-session charge against the member's saved card (category upgrades)."""
    if not customer_id or not payment_method_id:
        raise PaymentGatewayError("Member has no saved payment method")

    _configure()
    try:
        return as_dict(
            stripe.PaymentIntent.create(
                amount=amount,
                currency=currency(),
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                metadata=metadata,
                description=description,
            )
        )
    except stripe.StripeError as exc:
        logger.error("Stripe off-session charge failed", extra={"error": str(exc), "customer": customer_id})
        raise PaymentGatewayError(getattr(exc, "user_message", None) or str(exc)) from exc


def create_refund(*, payment_intent_id: str, amount: int, metadata: dict, reason: str = "requested_by_customer"):
    _configure()
    try:
        return as_dict(
            stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=amount,
                reason=reason,
                metadata=metadata,
            )
        )
    except stripe.StripeError as exc:
        logger.error(
            "Stripe refund failed",
            extra={"payment_intent_id": payment_intent_id, "amount": amount, "error": str(exc)},
        )
        raise PaymentGatewayError(getattr(exc, "user_message", None) or str(exc)) from exc

# payments/views/stripe_webhook.py

from __future__ import annotations

import logging

import stripe
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework.views import APIView

from payments.services import stripe_gateway, webhook_service
from payments.services.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


class WebhookThrottle(AnonRateThrottle):
    scope = "webhook"


class StripeWebhookView(APIView):
    """
    Stripe calls this. The signature is the authentication.

    - bad signature / payload -> 400 (Stripe stops retrying)
    - processing error        -> 500 (Stripe redelivers; handlers are idempotent)
    - unknown event type      -> 200
    """

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [WebhookThrottle]

    def post(self, request, *args, **kwargs):
        payload = request.body
        signature = request.headers.get("Stripe-Signature")

        try:
            event = stripe_gateway.construct_event(payload=payload, signature=signature)
        except (ValueError, stripe.SignatureVerificationError):
            logger.warning("Invalid Stripe webhook signature or payload")
            return Response({"error": "Invalid signature"}, status=status.HTTP_400_BAD_REQUEST)
        except PaymentGatewayError as exc:
            logger.error("Stripe webhook not configured: %s", exc)
            return Response({"error": "Webhook not configured"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        event_type = event["type"]
        try:
            outcome = webhook_service.handle_event(event)
        except Exception:
            logger.exception("Stripe webhook processing failed", extra={"event_type": event_type, "event_id": event.get("id")})
            return Response({"error": "Webhook processing failed"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        logger.info("Stripe webhook handled", extra={"event_type": event_type, "outcome": outcome})
        return Response({"received": True, "outcome": outcome}, status=status.HTTP_200_OK)

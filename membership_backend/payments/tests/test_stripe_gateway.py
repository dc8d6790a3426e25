# payments/tests/test_stripe_gateway.py

from __future__ import annotations

from unittest.mock import patch

import stripe
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from accounting.models import StagingInvoice
from accounting.services import staging_manager
from backend.testing import make_category, make_paid_registration, make_registration, make_user
from payments.models import Payment, Refund
from payments.services import checkout, refund_service, stripe_gateway, webhook_service
from registrations.models import UserRegistration

STRIPE_SETTINGS = {
    "STRIPE": {
        "SECRET_KEY": "sk_test_gateway",
        "WEBHOOK_SECRET": "whsec_gateway",
        "API_VERSION": "",
        "CURRENCY": "usd",
    }
}


def _succeeded_event(intent_id: str, metadata: dict, *, amount: int) -> stripe.Event:
    return stripe.Event.construct_from(
        {
            "id": f"evt_{intent_id}",
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": intent_id,
                    "object": "payment_intent",
                    "amount": amount,
                    "amount_received": amount,
                    "latest_charge": f"ch_{intent_id}",
                    "metadata": metadata,
                }
            },
        },
        "sk_test_gateway",
    )


@override_settings(PAYMENTS=STRIPE_SETTINGS)
class StripeObjectTests(TestCase):
    """
    GUARANTEES:
    - SDK objects are turned into plain dicts at the gateway
    - services work on real Stripe objects, not just dict fixtures
    """

    def setUp(self):
        self.finance = make_user(role="finance")
        self.member = make_user()
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")

    @patch("payments.services.stripe_gateway.create_payment_intent")
    def _checkout(self, create_intent):
        create_intent.return_value = {"id": "pi_obj", "client_secret": "secret"}
        started = checkout.start_registration_checkout(user=self.member, category=self.adult)
        return Payment.objects.get(pk=started["payment_id"])

    @patch("stripe.Webhook.construct_event")
    def test_webhook_view_handles_sdk_event(self, construct_event):
        payment = self._checkout()
        construct_event.return_value = _succeeded_event("pi_obj", payment.metadata, amount=10000)

        res = APIClient().post(
            reverse("payments:stripe-webhook"),
            data=b"{}",
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=x",
        )

        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["outcome"], webhook_service.OUTCOME_PROCESSED)
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_COMPLETED)
        self.assertEqual(payment.stripe_charge_id, "ch_pi_obj")
        self.assertEqual(UserRegistration.objects.get(user=self.member).payment_status, UserRegistration.STATUS_PAID)

    def test_handle_event_accepts_sdk_event(self):
        payment = self._checkout()

        outcome = webhook_service.handle_event(_succeeded_event("pi_obj", payment.metadata, amount=10000))

        self.assertEqual(outcome, webhook_service.OUTCOME_PROCESSED)
        self.assertEqual(StagingInvoice.objects.get(payment=payment).sync_status, StagingInvoice.SYNC_PENDING)

    @patch("stripe.Refund.create")
    def test_confirm_refund_with_sdk_refund(self, create):
        create.return_value = stripe.Refund.construct_from(
            {"id": "re_obj", "object": "refund", "status": "succeeded", "metadata": {}},
            "sk_test_gateway",
        )
        entry, payment = make_paid_registration(self.member, self.adult)
        staging_manager.stage_registration_purchase(entry, payment)
        refund = refund_service.stage_refund(
            payment=payment,
            refund_type=Refund.TYPE_PROPORTIONAL,
            user=self.finance,
            amount=2500,
        )

        refund = refund_service.confirm_refund(refund=refund, user=self.finance)

        self.assertEqual(refund.status, Refund.STATUS_COMPLETED)
        self.assertEqual(refund.stripe_refund_id, "re_obj")
        self.assertEqual(create.call_args.kwargs["amount"], 2500)

    @patch("stripe.PaymentIntent.create")
    def test_off_session_charge_returns_plain_dict(self, create):
        create.return_value = stripe.PaymentIntent.construct_from(
            {"id": "pi_off", "object": "payment_intent", "status": "succeeded", "metadata": {"categoryChange": "true"}},
            "sk_test_gateway",
        )

        intent = stripe_gateway.charge_saved_method(
            amount=5000,
            customer_id="cus_1",
            payment_method_id="pm_1",
            metadata={"categoryChange": "true"},
        )

        self.assertIsInstance(intent, dict)
        self.assertEqual(intent.get("status"), "succeeded")
        self.assertEqual(intent["metadata"], {"categoryChange": "true"})
        self.assertTrue(create.call_args.kwargs["off_session"])

    def test_plain_dicts_pass_through(self):
        payload = {"id": "pi_dict"}
        self.assertIs(stripe_gateway.as_dict(payload), payload)
        self.assertIsNone(stripe_gateway.as_dict(None))

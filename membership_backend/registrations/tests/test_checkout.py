# registrations/tests/test_checkout.py

from __future__ import annotations

from unittest.mock import patch

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from accounting.models import StagingInvoice
from backend.testing import (
    make_category,
    make_discount_code,
    make_membership,
    make_paid_registration,
    make_registration,
    make_user,
)
from discounts.models import DiscountUsage
from payments.models import Payment
from payments.services import checkout
from payments.services.exceptions import CheckoutError, PaymentGatewayError
from registrations.models import UserRegistration

CREATE_INTENT = "payments.services.stripe_gateway.create_payment_intent"


class RegistrationCheckoutTests(TestCase):
    def setUp(self):
        self.member = make_user()
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")

    @patch(CREATE_INTENT)
    def test_paid_checkout_reserves_seat_and_stages_draft(self, create_intent):
        create_intent.return_value = {"id": "pi_c1", "client_secret": "secret_c1"}

        result = checkout.start_registration_checkout(user=self.member, category=self.adult)

        self.assertEqual(result["status"], "requires_payment")
        self.assertEqual(result["client_secret"], "secret_c1")
        self.assertEqual(create_intent.call_args.kwargs["amount"], 10000)
        metadata = create_intent.call_args.kwargs["metadata"]
        self.assertEqual(metadata["registrationId"], str(self.registration.id))
        self.assertEqual(metadata["stagingRecordId"], result["staging_id"])

        entry = UserRegistration.objects.get(pk=result["user_registration_id"])
        self.assertEqual(entry.payment_status, UserRegistration.STATUS_AWAITING_PAYMENT)
        self.assertIsNotNone(entry.reservation_expires_at)

        payment = Payment.objects.get(pk=result["payment_id"])
        self.assertEqual(payment.stripe_payment_intent_id, "pi_c1")
        self.assertEqual(payment.status, Payment.STATUS_PENDING)

        invoice = StagingInvoice.objects.get(pk=result["staging_id"])
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_STAGED)
        self.assertEqual(invoice.metadata["stripe_payment_intent_id"], "pi_c1")
        self.assertEqual(invoice.payments.get().reference, "pi_c1")

    def test_full_discount_completes_without_stripe(self):
        make_discount_code(code="COMP", percentage=100)

        with patch(CREATE_INTENT) as create_intent:
            result = checkout.start_registration_checkout(user=self.member, category=self.adult, discount_code="comp")

        create_intent.assert_not_called()
        self.assertEqual(result["status"], "completed")
        self.assertEqual(result["discount"]["applied"], 10000)

        entry = UserRegistration.objects.get(pk=result["user_registration_id"])
        self.assertEqual(entry.payment_status, UserRegistration.STATUS_PAID)
        payment = Payment.objects.get(pk=result["payment_id"])
        self.assertEqual(payment.status, Payment.STATUS_COMPLETED)
        self.assertEqual(payment.payment_method, Payment.METHOD_FREE)

        invoice = StagingInvoice.objects.get(pk=result["staging_id"])
        self.assertEqual(invoice.reason, StagingInvoice.REASON_FREE_PURCHASE)
        self.assertFalse(invoice.payments.exists())
        self.assertEqual(DiscountUsage.objects.get().amount_saved, 10000)

    @patch(CREATE_INTENT)
    def test_seasonal_cap_limits_discount(self, create_intent):
        create_intent.return_value = {"id": "pi_c2", "client_secret": "secret"}
        make_discount_code(code="HARDSHIP", percentage=50, max_per_season=3000)

        result = checkout.start_registration_checkout(user=self.member, category=self.adult, discount_code="HARDSHIP")

        self.assertTrue(result["discount"]["is_partial"])
        self.assertEqual(result["discount"]["requested"], 5000)
        self.assertEqual(result["amount"], 7000)
        self.assertEqual(create_intent.call_args.kwargs["metadata"]["discountAmount"], "3000")

    def test_unknown_code_is_rejected(self):
        with self.assertRaises(CheckoutError):
            checkout.start_registration_checkout(user=self.member, category=self.adult, discount_code="NOPE")
        self.assertFalse(Payment.objects.exists())

    def test_full_category_is_rejected(self):
        small = make_category(self.registration, name="Masters", price=8000, code="204", max_capacity=1)
        make_paid_registration(make_user(), small)

        with self.assertRaisesMessage(CheckoutError, "is full"):
            checkout.start_registration_checkout(user=self.member, category=small)

    def test_already_paid_member_cannot_check_out_again(self):
        make_paid_registration(self.member, self.adult)

        with self.assertRaises(CheckoutError):
            checkout.start_registration_checkout(user=self.member, category=self.adult)

    @patch(CREATE_INTENT)
    def test_stripe_failure_releases_reservation(self, create_intent):
        create_intent.side_effect = PaymentGatewayError("stripe down")

        with self.assertRaises(CheckoutError):
            checkout.start_registration_checkout(user=self.member, category=self.adult)

        payment = Payment.objects.get()
        self.assertEqual(payment.status, Payment.STATUS_FAILED)
        entry = UserRegistration.objects.get()
        self.assertEqual(entry.payment_status, UserRegistration.STATUS_FAILED)
        self.assertFalse(StagingInvoice.objects.exclude(sync_status=StagingInvoice.SYNC_IGNORE).exists())


class MembershipCheckoutTests(TestCase):
    def setUp(self):
        self.member = make_user()
        self.membership = make_membership(price_monthly=2500)

    @patch(CREATE_INTENT)
    def test_checkout_prices_by_month(self, create_intent):
        create_intent.return_value = {"id": "pi_m1", "client_secret": "secret"}

        result = checkout.start_membership_checkout(user=self.member, membership=self.membership, months=3)

        self.assertEqual(result["amount"], 7500)
        self.assertEqual(create_intent.call_args.kwargs["metadata"]["durationMonths"], "3")
        invoice = StagingInvoice.objects.get(pk=result["staging_id"])
        self.assertEqual(invoice.reason, StagingInvoice.REASON_MEMBERSHIP)
        self.assertEqual(invoice.net_amount, 7500)

    def test_duration_out_of_range_is_rejected(self):
        for months in (0, checkout.MAX_MEMBERSHIP_MONTHS + 1):
            with self.subTest(months=months):
                with self.assertRaises(CheckoutError):
                    checkout.start_membership_checkout(user=self.member, membership=self.membership, months=months)


class CheckoutApiTests(TestCase):
    def setUp(self):
        self.api = APIClient()
        self.member = make_user()
        self.api.force_authenticate(self.member)
        registration = make_registration()
        self.adult = make_category(registration, name="Adult", price=10000, code="200")

    def test_anonymous_is_rejected(self):
        self.api.force_authenticate(None)
        res = self.api.post(reverse("registrations:registration-checkout"), {"category_id": str(self.adult.id)})
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    @patch(CREATE_INTENT)
    def test_paid_checkout_returns_client_secret(self, create_intent):
        create_intent.return_value = {"id": "pi_api", "client_secret": "secret_api"}

        res = self.api.post(reverse("registrations:registration-checkout"), {"category_id": str(self.adult.id)}, format="json")

        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["client_secret"], "secret_api")

    def test_free_checkout_returns_created(self):
        make_discount_code(code="COMP", percentage=100)
        res = self.api.post(
            reverse("registrations:registration-checkout"),
            {"category_id": str(self.adult.id), "discount_code": "COMP"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["status"], "completed")

    def test_checkout_error_is_reported(self):
        res = self.api.post(
            reverse("registrations:registration-checkout"),
            {"category_id": str(self.adult.id), "discount_code": "NOPE"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data["error"]["code"], "CHECKOUT_FAILED")

    def test_membership_months_are_validated(self):
        membership = make_membership()
        res = self.api.post(
            reverse("registrations:membership-checkout"),
            {"membership_id": str(membership.id), "months": 13},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

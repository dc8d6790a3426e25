# payments/tests/test_refunds.py

from __future__ import annotations

from unittest.mock import patch

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from accounting.models import StagingInvoice, StagingPayment
from accounting.services import staging_manager
from backend.testing import (
    make_category,
    make_completed_payment,
    make_discount_code,
    make_paid_registration,
    make_registration,
    make_user,
)
from discounts.models import DiscountUsage
from discounts.services.discount_limit import seasonal_usage
from payments.models import Payment, Refund
from payments.services import refund_service, webhook_service
from payments.services.exceptions import (
    PaymentGatewayError,
    RefundAmountError,
    RefundNotAllowedError,
    RefundStateError,
)

CREATE_REFUND = "payments.services.stripe_gateway.create_refund"


class RefundServiceTests(TestCase):
    """
    GUARANTEES:
    - staged refunds never move money or release their credit note
    - a credit note is queued only once Stripe confirms the refund
    - failed or cancelled refunds leave nothing to sync
    """

    def setUp(self):
        self.finance = make_user(role="finance")
        self.member = make_user()
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")
        self.entry, self.payment = make_paid_registration(self.member, self.adult)
        staging_manager.stage_registration_purchase(self.entry, self.payment)

    def _stage(self, amount: int = 4000) -> Refund:
        return refund_service.stage_refund(
            payment=self.payment,
            refund_type=Refund.TYPE_PROPORTIONAL,
            user=self.finance,
            amount=amount,
            reason="Injury",
        )

    def test_stage_creates_staged_refund_and_credit_note(self):
        refund = self._stage()

        self.assertEqual(refund.status, Refund.STATUS_STAGED)
        self.assertEqual(refund.processed_by, self.finance)
        note = refund.staging_invoice
        self.assertEqual(note.invoice_type, StagingInvoice.TYPE_CREDIT_NOTE)
        self.assertEqual(note.sync_status, StagingInvoice.SYNC_STAGED)
        # staged refunds do not reduce the refundable balance
        self.assertEqual(self.payment.refundable_amount(), 10000)

    def test_amount_above_refundable_balance_rejected(self):
        with self.assertRaises(RefundAmountError):
            self._stage(amount=10001)
        self.assertFalse(Refund.objects.exists())

    def test_only_completed_payments_are_refundable(self):
        Payment.objects.filter(pk=self.payment.pk).update(status=Payment.STATUS_PENDING)
        self.payment.refresh_from_db()

        with self.assertRaises(RefundNotAllowedError):
            self._stage()

    def test_preview_writes_nothing(self):
        preview = refund_service.preview_refund(
            payment=self.payment,
            refund_type=Refund.TYPE_PROPORTIONAL,
            amount=2500,
        )

        self.assertEqual(preview["total_amount"], 2500)
        self.assertEqual(preview["payment_info"]["available_amount"], 10000)
        self.assertEqual(sum(line["line_amount"] for line in preview["line_items"]), 2500)
        self.assertFalse(Refund.objects.exists())

    @patch(CREATE_REFUND)
    def test_confirm_success_queues_credit_note(self, create_refund):
        create_refund.return_value = {"id": "re_1", "status": "succeeded"}
        refund = self._stage()

        refund = refund_service.confirm_refund(refund=refund, user=self.finance)

        self.assertEqual(refund.status, Refund.STATUS_COMPLETED)
        self.assertEqual(refund.stripe_refund_id, "re_1")
        note = StagingInvoice.objects.get(refund=refund)
        self.assertEqual(note.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertEqual(note.payments.get().sync_status, StagingPayment.SYNC_PENDING)

        kwargs = create_refund.call_args.kwargs
        self.assertEqual(kwargs["amount"], 4000)
        self.assertEqual(kwargs["payment_intent_id"], self.payment.stripe_payment_intent_id)
        self.assertEqual(kwargs["metadata"]["refund_id"], str(refund.id))

        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.STATUS_COMPLETED)
        self.assertEqual(self.payment.refundable_amount(), 6000)

    @patch(CREATE_REFUND)
    def test_full_refund_marks_payment_refunded(self, create_refund):
        create_refund.return_value = {"id": "re_1", "status": "succeeded"}
        refund = self._stage(amount=10000)

        refund_service.confirm_refund(refund=refund, user=self.finance)

        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.STATUS_REFUNDED)

    @patch(CREATE_REFUND)
    def test_pending_refund_completes_from_webhook(self, create_refund):
        create_refund.return_value = {"id": "re_2", "status": "pending"}
        refund = self._stage()

        refund = refund_service.confirm_refund(refund=refund, user=self.finance)

        self.assertEqual(refund.status, Refund.STATUS_PENDING)
        self.assertEqual(StagingInvoice.objects.get(refund=refund).sync_status, StagingInvoice.SYNC_STAGED)

        event = {
            "id": "evt_1",
            "type": "charge.refunded",
            "data": {
                "object": {
                    "id": "ch_1",
                    "refunds": {"data": [{"id": "re_2", "status": "succeeded", "metadata": {"refund_id": str(refund.id)}}]},
                }
            },
        }
        self.assertEqual(webhook_service.handle_event(event), webhook_service.OUTCOME_PROCESSED)
        self.assertEqual(webhook_service.handle_event(event), webhook_service.OUTCOME_DUPLICATE)

        refund.refresh_from_db()
        self.assertEqual(refund.status, Refund.STATUS_COMPLETED)
        self.assertEqual(StagingInvoice.objects.get(refund=refund).sync_status, StagingInvoice.SYNC_PENDING)

    @patch(CREATE_REFUND)
    def test_gateway_error_fails_refund_and_ignores_staging(self, create_refund):
        create_refund.side_effect = PaymentGatewayError("Charge already refunded")
        refund = self._stage()

        with self.assertRaises(PaymentGatewayError):
            refund_service.confirm_refund(refund=refund, user=self.finance)

        refund.refresh_from_db()
        self.assertEqual(refund.status, Refund.STATUS_FAILED)
        self.assertIn("already refunded", refund.failure_reason)
        note = StagingInvoice.objects.get(refund=refund)
        self.assertEqual(note.sync_status, StagingInvoice.SYNC_IGNORE)
        self.assertEqual(note.payments.get().sync_status, StagingPayment.SYNC_IGNORE)

    @patch(CREATE_REFUND)
    def test_stripe_failed_status_fails_refund(self, create_refund):
        create_refund.return_value = {"id": "re_3", "status": "failed", "failure_reason": "expired_or_canceled_card"}
        refund = self._stage()

        with self.assertRaises(PaymentGatewayError):
            refund_service.confirm_refund(refund=refund, user=self.finance)

        refund.refresh_from_db()
        self.assertEqual(refund.status, Refund.STATUS_FAILED)
        self.assertEqual(refund.failure_reason, "expired_or_canceled_card")

    @patch(CREATE_REFUND)
    def test_confirm_twice_rejected(self, create_refund):
        create_refund.return_value = {"id": "re_1", "status": "succeeded"}
        refund = self._stage()
        refund_service.confirm_refund(refund=refund, user=self.finance)

        with self.assertRaises(RefundStateError):
            refund_service.confirm_refund(refund=refund, user=self.finance)
        self.assertEqual(create_refund.call_count, 1)

    @patch(CREATE_REFUND)
    def test_confirm_rechecks_balance(self, create_refund):
        create_refund.return_value = {"id": "re_1", "status": "succeeded"}
        first = self._stage(amount=7000)
        second = self._stage(amount=7000)
        refund_service.confirm_refund(refund=first, user=self.finance)

        with self.assertRaises(RefundAmountError):
            refund_service.confirm_refund(refund=second, user=self.finance)

    def test_cancel_ignores_staging(self):
        refund = self._stage()

        refund = refund_service.cancel_refund(refund=refund, user=self.finance)

        self.assertEqual(refund.status, Refund.STATUS_IGNORE)
        self.assertEqual(StagingInvoice.objects.get(refund=refund).sync_status, StagingInvoice.SYNC_IGNORE)

        with self.assertRaises(RefundStateError):
            refund_service.cancel_refund(refund=refund, user=self.finance)

    def test_zero_amount_rejected_for_paid_payment(self):
        with self.assertRaises(RefundAmountError):
            self._stage(amount=0)
        self.assertFalse(Refund.objects.exists())

    @patch(CREATE_REFUND)
    def test_zero_refund_of_free_purchase_completes_without_stripe(self, create_refund):
        free = make_completed_payment(self.member, total=10000, discount=10000)

        refund = refund_service.stage_refund(
            payment=free,
            refund_type=Refund.TYPE_PROPORTIONAL,
            user=self.finance,
            amount=0,
            reason="Withdrew",
        )
        refund = refund_service.confirm_refund(refund=refund, user=self.finance)

        create_refund.assert_not_called()
        self.assertEqual(refund.status, Refund.STATUS_COMPLETED)
        note = StagingInvoice.objects.get(refund=refund)
        self.assertEqual(note.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertEqual(note.net_amount, 0)
        self.assertFalse(note.payments.exists())
        free.refresh_from_db()
        self.assertEqual(free.status, Payment.STATUS_REFUNDED)

    @patch(CREATE_REFUND)
    def test_redelivered_success_keeps_refunded_payment_refunded(self, create_refund):
        create_refund.return_value = {"id": "re_full", "status": "succeeded"}
        refund_service.confirm_refund(refund=self._stage(amount=10000), user=self.finance)
        event = {
            "id": "evt_again",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": self.payment.stripe_payment_intent_id,
                    "amount": 10000,
                    "amount_received": 10000,
                    "metadata": {"userId": str(self.member.pk), "registrationId": str(self.registration.id)},
                }
            },
        }

        outcome = webhook_service.handle_event(event)

        self.assertEqual(outcome, webhook_service.OUTCOME_DUPLICATE)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.STATUS_REFUNDED)
        self.assertEqual(StagingInvoice.objects.filter(payment=self.payment, refund__isnull=True).count(), 1)


class DiscountRefundTests(TestCase):
    def setUp(self):
        self.finance = make_user(role="finance")
        self.member = make_user()
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")
        self.entry, self.payment = make_paid_registration(self.member, self.adult)
        staging_manager.stage_registration_purchase(self.entry, self.payment)

    def _stage(self, code: str) -> Refund:
        return refund_service.stage_refund(
            payment=self.payment,
            refund_type=Refund.TYPE_DISCOUNT_CODE,
            user=self.finance,
            discount_code=code,
        )

    def test_discount_refund_records_usage(self):
        code = make_discount_code(code="HARDSHIP", percentage=20, max_per_season=5000)

        refund = self._stage("hardship")

        self.assertEqual(refund.amount, 2000)
        self.assertEqual(refund.discount_code, code)
        usage = DiscountUsage.objects.get(refund=refund)
        self.assertEqual(usage.amount_saved, 2000)
        self.assertEqual(seasonal_usage(self.member, code.category, self.registration.season), 2000)

    def test_discount_refund_is_capped(self):
        make_discount_code(code="HARDSHIP", percentage=20, max_per_season=1500)

        preview = refund_service.preview_refund(
            payment=self.payment,
            refund_type=Refund.TYPE_DISCOUNT_CODE,
            discount_code="HARDSHIP",
        )

        self.assertEqual(preview["total_amount"], 1500)
        self.assertTrue(preview["discount_info"]["is_partial"])

    def test_exhausted_cap_rejected(self):
        code = make_discount_code(code="HARDSHIP", percentage=20, max_per_season=2000)
        self._stage("HARDSHIP")

        with self.assertRaises(RefundAmountError):
            self._stage("HARDSHIP")

        self.assertEqual(Refund.objects.filter(discount_code=code).count(), 1)

    def test_cancel_gives_usage_back(self):
        code = make_discount_code(code="HARDSHIP", percentage=20, max_per_season=5000)
        refund = self._stage("HARDSHIP")

        refund_service.cancel_refund(refund=refund, user=self.finance)

        self.assertEqual(seasonal_usage(self.member, code.category, self.registration.season), 0)
        self.assertEqual(
            sorted(DiscountUsage.objects.filter(refund=refund).values_list("amount_saved", flat=True)),
            [-2000, 2000],
        )

    @patch(CREATE_REFUND)
    def test_failed_discount_refund_gives_usage_back(self, create_refund):
        create_refund.side_effect = PaymentGatewayError("declined")
        code = make_discount_code(code="HARDSHIP", percentage=20, max_per_season=5000)
        refund = self._stage("HARDSHIP")

        with self.assertRaises(PaymentGatewayError):
            refund_service.confirm_refund(refund=refund, user=self.finance)

        self.assertEqual(seasonal_usage(self.member, code.category, self.registration.season), 0)


class RefundApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.finance = make_user(role="finance")
        self.staff = make_user(role="staff")
        self.member = make_user()
        registration = make_registration()
        adult = make_category(registration, name="Adult", price=10000, code="200")
        self.entry, self.payment = make_paid_registration(self.member, adult)
        staging_manager.stage_registration_purchase(self.entry, self.payment)

    def _stage_payload(self, amount: int = 3000) -> dict:
        return {"payment_id": str(self.payment.id), "refund_type": "proportional", "amount": amount, "reason": "Moved"}

    def test_anonymous_rejected(self):
        res = self.client.post(reverse("payments:refund-stage"), self._stage_payload(), format="json")
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_member_and_staff_forbidden(self):
        for user in (self.member, self.staff):
            self.client.force_authenticate(user=user)
            res = self.client.post(reverse("payments:refund-stage"), self._stage_payload(), format="json")
            self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_finance_can_preview_and_stage(self):
        self.client.force_authenticate(user=self.finance)

        preview = self.client.post(reverse("payments:refund-preview"), self._stage_payload(), format="json")
        self.assertEqual(preview.status_code, status.HTTP_200_OK)
        self.assertEqual(preview.data["total_amount"], 3000)

        staged = self.client.post(reverse("payments:refund-stage"), self._stage_payload(), format="json")
        self.assertEqual(staged.status_code, status.HTTP_201_CREATED)
        self.assertEqual(staged.data["status"], Refund.STATUS_STAGED)
        self.assertIsNotNone(staged.data["staging_invoice_id"])

    def test_amount_error_mapped(self):
        self.client.force_authenticate(user=self.finance)

        res = self.client.post(reverse("payments:refund-stage"), self._stage_payload(amount=50000), format="json")

        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data["error"]["code"], "INVALID_REFUND_AMOUNT")

    def test_proportional_refund_needs_amount(self):
        self.client.force_authenticate(user=self.finance)
        payload = self._stage_payload()
        payload.pop("amount")

        res = self.client.post(reverse("payments:refund-stage"), payload, format="json")

        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("amount", res.data)

    @patch(CREATE_REFUND)
    def test_confirm_endpoint(self, create_refund):
        create_refund.return_value = {"id": "re_1", "status": "succeeded"}
        self.client.force_authenticate(user=self.finance)
        staged = self.client.post(reverse("payments:refund-stage"), self._stage_payload(), format="json")

        res = self.client.post(reverse("payments:refund-confirm"), {"refund_id": staged.data["id"]}, format="json")

        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["status"], Refund.STATUS_COMPLETED)

    @patch(CREATE_REFUND)
    def test_confirm_gateway_error_is_502(self, create_refund):
        create_refund.side_effect = PaymentGatewayError("Stripe unavailable")
        self.client.force_authenticate(user=self.finance)
        staged = self.client.post(reverse("payments:refund-stage"), self._stage_payload(), format="json")

        res = self.client.post(reverse("payments:refund-confirm"), {"refund_id": staged.data["id"]}, format="json")

        self.assertEqual(res.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(res.data["error"]["code"], "PAYMENT_GATEWAY_ERROR")

    def test_cancel_twice_is_conflict(self):
        self.client.force_authenticate(user=self.finance)
        staged = self.client.post(reverse("payments:refund-stage"), self._stage_payload(), format="json")
        url = reverse("payments:refund-cancel")

        self.assertEqual(self.client.post(url, {"refund_id": staged.data["id"]}, format="json").status_code, 200)
        res = self.client.post(url, {"refund_id": staged.data["id"]}, format="json")

        self.assertEqual(res.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(res.data["error"]["code"], "INVALID_REFUND_STATE")

    def test_list_filters_by_status(self):
        refund_service.stage_refund(
            payment=self.payment,
            refund_type=Refund.TYPE_PROPORTIONAL,
            user=self.finance,
            amount=1000,
        )
        self.client.force_authenticate(user=self.finance)

        staged = self.client.get(reverse("payments:refund-list"), {"status": "staged"})
        completed = self.client.get(reverse("payments:refund-list"), {"status": "completed"})

        self.assertEqual(staged.status_code, status.HTTP_200_OK)
        self.assertEqual(staged.data["count"], 1)
        self.assertEqual(completed.data["count"], 0)

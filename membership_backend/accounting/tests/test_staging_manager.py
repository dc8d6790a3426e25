# accounting/tests/test_staging_manager.py

from __future__ import annotations

import random

from django.test import TestCase

from accounting.models import StagingInvoice, StagingLineItem, StagingPayment
from accounting.services import staging_manager
from accounting.services.exceptions import MissingAccountingCodeError, StagingError
from accounting.services.staging_metadata import NewRegistrationMetadata, parse_metadata
from backend.testing import (
    make_category,
    make_completed_payment,
    make_discount_code,
    make_paid_registration,
    make_registration,
    make_user,
)
from discounts.models import DiscountUsage
from payments.models import Payment, Refund


def _amounts(invoice: StagingInvoice) -> list[int]:
    return list(invoice.line_items.order_by("position").values_list("line_amount", flat=True))


def _codes(invoice: StagingInvoice) -> list[str]:
    return list(invoice.line_items.order_by("position").values_list("account_code", flat=True))


class AllocateProportionallyTests(TestCase):
    def test_shares_always_sum_to_amount(self):
        rng = random.Random(7)
        for _ in range(300):
            weights = [rng.randint(-5000, 20000) for _ in range(rng.randint(1, 6))]
            if sum(weights) == 0:
                continue
            amount = rng.randint(1, 50000)

            shares = staging_manager.allocate_proportionally(amount, weights)

            self.assertEqual(len(shares), len(weights))
            self.assertEqual(sum(shares), amount, msg=f"weights={weights} amount={amount}")

    def test_keeps_discount_sign(self):
        self.assertEqual(staging_manager.allocate_proportionally(4000, [10000, -2000]), [5000, -1000])

    def test_zero_weights_rejected(self):
        with self.assertRaises(StagingError):
            staging_manager.allocate_proportionally(100, [500, -500])


class PurchaseStagingTests(TestCase):
    """
    GUARANTEES:
    - net_amount == SUM(line_amount)
    - completed payments stage AUTHORISED / pending with a payment row
    - one staging invoice per payment, however often staging is called
    """

    def setUp(self):
        self.member = make_user()
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")
        self.code = make_discount_code(code="HARDSHIP", percentage=20, accounting_code="450")

    def test_discounted_registration_is_balanced(self):
        entry, payment = make_paid_registration(self.member, self.adult, discount_code=self.code, discount=2000)

        invoice = staging_manager.stage_registration_purchase(entry, payment)

        self.assertEqual(invoice.reason, StagingInvoice.REASON_NEW_REGISTRATION)
        self.assertEqual(invoice.invoice_type, StagingInvoice.TYPE_INVOICE)
        self.assertEqual(_amounts(invoice), [10000, -2000])
        self.assertEqual(_codes(invoice), ["200", "450"])
        self.assertEqual(invoice.total_amount, 10000)
        self.assertEqual(invoice.discount_amount, 2000)
        self.assertEqual(invoice.net_amount, 8000)
        self.assertTrue(invoice.is_balanced())

        self.assertEqual(invoice.invoice_status, StagingInvoice.STATUS_AUTHORISED)
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)

        staged_payment = invoice.payments.get()
        self.assertEqual(staged_payment.amount_paid, 8000)
        self.assertEqual(staged_payment.sync_status, StagingPayment.SYNC_PENDING)
        self.assertEqual(staged_payment.reference, payment.stripe_payment_intent_id)

        metadata = parse_metadata(invoice.metadata)
        self.assertIsInstance(metadata, NewRegistrationMetadata)
        self.assertEqual(metadata.discount_codes_used[0].amount_saved, 2000)

    def test_staging_twice_returns_same_invoice(self):
        entry, payment = make_paid_registration(self.member, self.adult)

        first = staging_manager.stage_registration_purchase(entry, payment)
        second = staging_manager.stage_registration_purchase(entry, payment)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(StagingInvoice.objects.filter(payment=payment).count(), 1)
        self.assertEqual(StagingPayment.objects.filter(invoice=first).count(), 1)

    def test_unconfirmed_payment_stages_draft(self):
        entry, payment = make_paid_registration(self.member, self.adult)
        Payment.objects.filter(pk=payment.pk).update(status=Payment.STATUS_PENDING)
        payment.refresh_from_db()

        invoice = staging_manager.stage_registration_purchase(entry, payment)

        self.assertEqual(invoice.invoice_status, StagingInvoice.STATUS_DRAFT)
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_STAGED)
        self.assertEqual(invoice.payments.get().sync_status, StagingPayment.SYNC_STAGED)

    def test_fully_discounted_purchase_has_no_payment_row(self):
        full = make_discount_code(code="STAFF", percentage=100, accounting_code="451")
        entry, payment = make_paid_registration(self.member, self.adult, discount_code=full, discount=10000)

        invoice = staging_manager.stage_registration_purchase(entry, payment)

        self.assertEqual(invoice.reason, StagingInvoice.REASON_FREE_PURCHASE)
        self.assertEqual(invoice.net_amount, 0)
        self.assertEqual(invoice.invoice_status, StagingInvoice.STATUS_AUTHORISED)
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertFalse(invoice.payments.exists())

    def test_missing_category_code_aborts_staging(self):
        uncoded = make_category(self.registration, name="Junior", price=5000, code="")
        entry, payment = make_paid_registration(self.member, uncoded)

        with self.assertRaises(MissingAccountingCodeError):
            staging_manager.stage_registration_purchase(entry, payment)

        self.assertFalse(StagingInvoice.objects.exists())

    def test_promote_moves_staged_rows_to_pending(self):
        entry, payment = make_paid_registration(self.member, self.adult)
        Payment.objects.filter(pk=payment.pk).update(status=Payment.STATUS_PENDING)
        payment.refresh_from_db()
        invoice = staging_manager.stage_registration_purchase(entry, payment)

        payment.mark_completed(charge_id="ch_1")
        staging_manager.promote_to_pending(invoice=invoice, payment=payment, metadata_updates={"charge": "ch_1"})

        invoice.refresh_from_db()
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertEqual(invoice.invoice_status, StagingInvoice.STATUS_AUTHORISED)
        self.assertEqual(invoice.metadata["charge"], "ch_1")
        self.assertEqual(invoice.payments.get().sync_status, StagingPayment.SYNC_PENDING)

    def test_discard_deletes_local_drafts(self):
        entry, payment = make_paid_registration(self.member, self.adult)
        Payment.objects.filter(pk=payment.pk).update(status=Payment.STATUS_PENDING)
        payment.refresh_from_db()
        staging_manager.stage_registration_purchase(entry, payment)

        remote = staging_manager.discard_abandoned_drafts(payment=payment)

        self.assertEqual(remote, [])
        self.assertFalse(StagingInvoice.objects.filter(payment=payment).exists())


class RefundStagingTests(TestCase):
    def setUp(self):
        self.member = make_user()
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")
        self.code = make_discount_code(code="HARDSHIP", percentage=20, accounting_code="450")
        self.entry, self.payment = make_paid_registration(
            self.member, self.adult, discount_code=self.code, discount=2000
        )
        staging_manager.stage_registration_purchase(self.entry, self.payment)

    def _refund(self, amount: int, **extra) -> Refund:
        return Refund.objects.create(payment=self.payment, user=self.member, amount=amount, **extra)

    def test_proportional_credit_note_mirrors_purchase_lines(self):
        refund = self._refund(4000)

        note = staging_manager.stage_proportional_credit_note(refund=refund)

        self.assertEqual(note.invoice_type, StagingInvoice.TYPE_CREDIT_NOTE)
        self.assertEqual(note.reason, StagingInvoice.REASON_REFUND_PROPORTIONAL)
        self.assertEqual(_amounts(note), [5000, -1000])
        self.assertEqual(_codes(note), ["200", "450"])
        self.assertEqual(note.net_amount, 4000)
        self.assertTrue(note.is_balanced())
        self.assertEqual(note.sync_status, StagingInvoice.SYNC_STAGED)
        self.assertEqual(note.payments.get().amount_paid, -4000)

    def test_proportional_credit_note_without_purchase_uses_fallback_account(self):
        other = make_completed_payment(self.member, total=3000)
        refund = Refund.objects.create(payment=other, user=self.member, amount=1200)

        note = staging_manager.stage_proportional_credit_note(refund=refund)

        line = note.line_items.get()
        self.assertEqual(line.line_item_type, StagingLineItem.TYPE_REFUND)
        self.assertEqual(line.line_amount, 1200)
        self.assertEqual(line.account_code, "200")

    def test_discount_credit_note_records_positive_usage(self):
        refund = self._refund(1500, refund_type=Refund.TYPE_DISCOUNT_CODE, discount_code=self.code)

        note = staging_manager.stage_discount_credit_note(refund=refund, discount_code=self.code)

        line = note.line_items.get()
        self.assertEqual(line.line_item_type, StagingLineItem.TYPE_DISCOUNT_REFUND)
        self.assertEqual(line.line_amount, 1500)
        self.assertEqual(line.account_code, "450")

        usage = DiscountUsage.objects.get(refund=refund)
        self.assertEqual(usage.amount_saved, 1500)
        self.assertEqual(usage.season_id, self.registration.season_id)

    def test_cancel_marks_credit_note_ignore(self):
        refund = self._refund(4000)
        staging_manager.stage_proportional_credit_note(refund=refund)

        note = staging_manager.cancel_refund_staging(refund=refund, error="cancelled")

        self.assertEqual(note.sync_status, StagingInvoice.SYNC_IGNORE)
        self.assertEqual(note.payments.get().sync_status, StagingPayment.SYNC_IGNORE)

    def test_mark_ready_queues_credit_note(self):
        refund = self._refund(4000)
        staging_manager.stage_proportional_credit_note(refund=refund)

        note = staging_manager.mark_refund_staging_ready(refund=refund)

        self.assertEqual(note.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertEqual(note.invoice_status, StagingInvoice.STATUS_AUTHORISED)
        self.assertEqual(note.payments.get().sync_status, StagingPayment.SYNC_PENDING)

    def test_discount_refund_preview_needs_code(self):
        with self.assertRaises(StagingError):
            staging_manager.preview_refund_lines(
                payment=self.payment,
                refund_type=Refund.TYPE_DISCOUNT_CODE,
                amount=500,
            )


class CategoryChangeStagingTests(TestCase):
    def setUp(self):
        self.member = make_user()
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")
        self.entry, self.payment = make_paid_registration(self.member, self.adult)

    def test_upgrade_invoices_the_difference(self):
        premium = make_category(self.registration, name="Premium", price=15000, code="201")
        extra = make_completed_payment(self.member, total=5000)

        invoice = staging_manager.stage_category_change(
            user_registration=self.entry,
            new_category=premium,
            payment=extra,
        )

        self.assertEqual(invoice.invoice_type, StagingInvoice.TYPE_INVOICE)
        self.assertEqual(_amounts(invoice), [15000, -10000])
        self.assertEqual(_codes(invoice), ["201", "200"])
        self.assertEqual(invoice.net_amount, 5000)
        self.assertEqual(invoice.payments.get().amount_paid, 5000)
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)

    def test_upgrade_without_payment_rejected(self):
        premium = make_category(self.registration, name="Premium", price=15000, code="201")

        with self.assertRaises(StagingError):
            staging_manager.stage_category_change(user_registration=self.entry, new_category=premium)

    def test_downgrade_credits_the_difference(self):
        junior = make_category(self.registration, name="Junior", price=6000, code="202")
        refund = Refund.objects.create(
            payment=self.payment,
            user=self.member,
            amount=4000,
            status=Refund.STATUS_PENDING,
        )

        note = staging_manager.stage_category_change(
            user_registration=self.entry,
            new_category=junior,
            refund=refund,
        )

        self.assertEqual(note.invoice_type, StagingInvoice.TYPE_CREDIT_NOTE)
        self.assertEqual(_amounts(note), [10000, -6000])
        self.assertEqual(note.net_amount, 4000)
        self.assertEqual(note.payments.get().amount_paid, -4000)
        self.assertEqual(note.sync_status, StagingInvoice.SYNC_STAGED)
        self.assertEqual(note.refund_id, refund.id)

    def test_same_price_different_code_stages_net_zero_swap(self):
        senior = make_category(self.registration, name="Senior", price=10000, code="203")

        invoice = staging_manager.stage_category_change(user_registration=self.entry, new_category=senior)

        self.assertEqual(invoice.line_items.count(), 4)
        self.assertEqual(_amounts(invoice), [-10000, 0, 10000, 0])
        self.assertEqual(_codes(invoice), ["200", "200", "203", "203"])
        self.assertEqual(invoice.net_amount, 0)
        self.assertEqual(invoice.invoice_status, StagingInvoice.STATUS_AUTHORISED)
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertFalse(invoice.payments.exists())

    def test_same_price_same_code_stages_nothing(self):
        masters = make_category(self.registration, name="Masters", price=10000, code="200")

        result = staging_manager.stage_category_change(user_registration=self.entry, new_category=masters)

        self.assertIsNone(result)
        self.assertEqual(StagingInvoice.objects.filter(reason=StagingInvoice.REASON_CATEGORY_CHANGE).count(), 0)

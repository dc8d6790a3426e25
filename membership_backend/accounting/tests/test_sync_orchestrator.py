# accounting/tests/test_sync_orchestrator.py

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.utils import timezone

from accounting.models import StagingInvoice, StagingPayment, SystemEvent, XeroConnection
from accounting.services import staging_manager, sync_orchestrator
from accounting.services.exceptions import XeroApiError
from accounting.services.xero_adapter import SubmitResult
from backend.testing import make_category, make_connection, make_paid_registration, make_registration, make_user
from payments.models import Payment, Refund

SYNC_SETTINGS = {
    "BATCH_SIZE": 50,
    "RETRY_BASE_MINUTES": 5,
    "RETRY_MAX_MINUTES": 60,
    "MAX_ATTEMPTS": 4,
    "LEASE_MINUTES": 15,
}


def _stage_paid_registration(*, category, minutes_ago: int = 0):
    member = make_user()
    entry, payment = make_paid_registration(member, category)
    invoice = staging_manager.stage_registration_purchase(entry, payment)
    if minutes_ago:
        StagingInvoice.objects.filter(pk=invoice.pk).update(staged_at=timezone.now() - timedelta(minutes=minutes_ago))
        invoice.refresh_from_db()
    return invoice, payment


@override_settings(XERO_SYNC=SYNC_SETTINGS)
class RunSyncTests(TestCase):
    """
    GUARANTEES:
    - one failed row never aborts the batch
    - failures back off exponentially, rate limits do not count as attempts
    - no connection -> nothing claimed, error reported
    """

    def setUp(self):
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")
        make_connection("tenant-1")

    @patch("accounting.services.xero_adapter.submit_payment")
    @patch("accounting.services.xero_adapter.submit_invoice")
    def test_one_failure_does_not_stop_the_batch(self, submit_invoice, submit_payment):
        first, _ = _stage_paid_registration(category=self.adult, minutes_ago=10)
        second, _ = _stage_paid_registration(category=self.adult)

        submit_invoice.side_effect = [
            XeroApiError("Account code '200' is not a valid code", status_code=400),
            SubmitResult(remote_id="inv-2", number="INV-0002"),
        ]
        submit_payment.return_value = SubmitResult(remote_id="pay-2")

        summary = sync_orchestrator.run_sync(triggered_by="test")

        self.assertTrue(summary.ok)
        self.assertEqual(summary.tenant_id, "tenant-1")
        self.assertEqual(summary.invoices.as_dict(), {"synced": 1, "failed": 1, "skipped": 0})
        self.assertEqual(summary.payments.as_dict(), {"synced": 1, "failed": 0, "skipped": 0})

        first.refresh_from_db()
        self.assertEqual(first.sync_status, StagingInvoice.SYNC_FAILED)
        self.assertEqual(first.attempt_count, 1)
        self.assertIn("not a valid code", first.sync_error)
        self.assertIsNotNone(first.next_attempt_at)
        self.assertEqual(first.payments.get().sync_status, StagingPayment.SYNC_PENDING)

        second.refresh_from_db()
        self.assertEqual(second.sync_status, StagingInvoice.SYNC_SYNCED)
        self.assertEqual(second.xero_invoice_id, "inv-2")
        self.assertEqual(second.invoice_number, "INV-0002")
        self.assertEqual(second.tenant_id, "tenant-1")

        paid = second.payments.get()
        self.assertEqual(paid.sync_status, StagingPayment.SYNC_SYNCED)
        self.assertEqual(paid.xero_payment_id, "pay-2")

        event = SystemEvent.objects.get(pk=summary.event_id)
        self.assertEqual(event.status, SystemEvent.STATUS_COMPLETED)
        self.assertEqual(event.triggered_by, "test")
        self.assertEqual(event.summary["invoices"]["failed"], 1)

    @patch("accounting.services.xero_adapter.submit_invoice")
    def test_rate_limit_releases_rows_and_stops(self, submit_invoice):
        first, _ = _stage_paid_registration(category=self.adult, minutes_ago=10)
        second, _ = _stage_paid_registration(category=self.adult)
        submit_invoice.side_effect = XeroApiError("Too many requests", status_code=429)

        summary = sync_orchestrator.run_sync()

        self.assertTrue(summary.rate_limited)
        self.assertEqual(submit_invoice.call_count, 1)
        self.assertEqual(summary.invoices.skipped, 2)
        for invoice in (first, second):
            invoice.refresh_from_db()
            self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)
            self.assertEqual(invoice.attempt_count, 0)
            self.assertIsNone(invoice.claimed_at)

    @patch("accounting.services.xero_adapter.submit_invoice")
    def test_backoff_doubles_then_caps(self, submit_invoice):
        invoice, _ = _stage_paid_registration(category=self.adult)
        submit_invoice.side_effect = XeroApiError("Validation failed", status_code=400)

        expected_delays = [5, 10, 20]
        for delay in expected_delays:
            before = timezone.now()
            sync_orchestrator.run_sync()
            invoice.refresh_from_db()

            self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_FAILED)
            lower = before + timedelta(minutes=delay) - timedelta(seconds=5)
            upper = timezone.now() + timedelta(minutes=delay) + timedelta(seconds=5)
            self.assertTrue(lower <= invoice.next_attempt_at <= upper)

            # due again
            StagingInvoice.objects.filter(pk=invoice.pk).update(next_attempt_at=timezone.now() - timedelta(seconds=1))

        sync_orchestrator.run_sync()
        invoice.refresh_from_db()
        self.assertEqual(invoice.attempt_count, 4)
        self.assertIsNone(invoice.next_attempt_at)

        # parked rows are not picked up again
        sync_orchestrator.run_sync()
        self.assertEqual(submit_invoice.call_count, 4)

    def test_no_connection_reports_error(self):
        invoice, _ = _stage_paid_registration(category=self.adult)
        XeroConnection.objects.all().delete()

        summary = sync_orchestrator.run_sync()

        self.assertFalse(summary.ok)
        self.assertIn("No active Xero connection", summary.error)
        self.assertEqual(SystemEvent.objects.get(pk=summary.event_id).status, SystemEvent.STATUS_FAILED)
        invoice.refresh_from_db()
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)

    def test_nothing_to_sync_finishes_cleanly(self):
        summary = sync_orchestrator.run_sync()

        self.assertTrue(summary.ok)
        self.assertEqual(summary.invoices.as_dict(), {"synced": 0, "failed": 0, "skipped": 0})
        self.assertEqual(SystemEvent.objects.get(pk=summary.event_id).status, SystemEvent.STATUS_COMPLETED)

    @patch("accounting.services.xero_adapter.submit_invoice")
    def test_credit_note_waits_for_completed_refund(self, submit_invoice):
        invoice, payment = _stage_paid_registration(category=self.adult)
        refund = Refund.objects.create(payment=payment, user=payment.user, amount=3000, status=Refund.STATUS_PENDING)
        note = staging_manager.stage_proportional_credit_note(refund=refund)
        StagingInvoice.objects.filter(pk=invoice.pk).update(sync_status=StagingInvoice.SYNC_SYNCED)
        StagingInvoice.objects.filter(pk=note.pk).update(sync_status=StagingInvoice.SYNC_PENDING)

        summary = sync_orchestrator.run_sync()

        submit_invoice.assert_not_called()
        self.assertEqual(summary.invoices.skipped, 1)
        note.refresh_from_db()
        self.assertEqual(note.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertEqual(note.sync_error, "Refund not completed yet")


@override_settings(XERO_SYNC=SYNC_SETTINGS)
class SelectionAndClaimTests(TestCase):
    def setUp(self):
        self.registration = make_registration()
        self.adult = make_category(self.registration, name="Adult", price=10000, code="200")

    def test_staged_row_becomes_eligible_once_payment_completes(self):
        member = make_user()
        entry, payment = make_paid_registration(member, self.adult)
        Payment.objects.filter(pk=payment.pk).update(status=Payment.STATUS_PENDING)
        payment.refresh_from_db()
        invoice = staging_manager.stage_registration_purchase(entry, payment)

        self.assertNotIn(invoice, sync_orchestrator.eligible_invoices())

        Payment.objects.filter(pk=payment.pk).update(status=Payment.STATUS_COMPLETED)

        self.assertIn(invoice, sync_orchestrator.eligible_invoices())

    def test_payment_waits_for_remote_invoice(self):
        invoice, _ = _stage_paid_registration(category=self.adult)
        self.assertEqual(sync_orchestrator.eligible_payments().count(), 0)

        StagingInvoice.objects.filter(pk=invoice.pk).update(
            sync_status=StagingInvoice.SYNC_SYNCED,
            xero_invoice_id="inv-1",
        )

        self.assertEqual(sync_orchestrator.eligible_payments().count(), 1)

    def test_expired_claims_are_released(self):
        invoice, _ = _stage_paid_registration(category=self.adult)
        StagingInvoice.objects.filter(pk=invoice.pk).update(
            sync_status=StagingInvoice.SYNC_PROCESSING,
            claimed_from_status=StagingInvoice.SYNC_PENDING,
            claimed_at=timezone.now() - timedelta(minutes=30),
        )

        released = sync_orchestrator.release_expired_claims()

        self.assertEqual(released, 1)
        invoice.refresh_from_db()
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertIsNone(invoice.claimed_at)

    def test_fresh_claims_are_kept(self):
        invoice, _ = _stage_paid_registration(category=self.adult)
        StagingInvoice.objects.filter(pk=invoice.pk).update(
            sync_status=StagingInvoice.SYNC_PROCESSING,
            claimed_from_status=StagingInvoice.SYNC_PENDING,
            claimed_at=timezone.now() - timedelta(minutes=1),
        )

        self.assertEqual(sync_orchestrator.release_expired_claims(), 0)

    def test_reset_failed_requeues_parked_rows(self):
        invoice, _ = _stage_paid_registration(category=self.adult)
        StagingInvoice.objects.filter(pk=invoice.pk).update(
            sync_status=StagingInvoice.SYNC_FAILED,
            attempt_count=4,
            next_attempt_at=None,
            sync_error="boom",
        )

        reset = sync_orchestrator.reset_failed(ids=[invoice.pk])

        self.assertEqual(reset, {"invoices": 1, "payments": 0})
        invoice.refresh_from_db()
        self.assertEqual(invoice.sync_status, StagingInvoice.SYNC_PENDING)
        self.assertEqual(invoice.attempt_count, 0)
        self.assertEqual(invoice.sync_error, "")

    def test_pending_counts_cover_every_status(self):
        _stage_paid_registration(category=self.adult)

        counts = sync_orchestrator.pending_counts()

        self.assertEqual(counts["invoices"][StagingInvoice.SYNC_PENDING], 1)
        self.assertEqual(counts["invoices"][StagingInvoice.SYNC_FAILED], 0)
        self.assertEqual(counts["payments"][StagingPayment.SYNC_PENDING], 1)

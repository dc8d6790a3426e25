# accounting/tests/test_accounts_sync.py

from __future__ import annotations

from unittest.mock import patch

from django.test import TestCase

from accounting.models import SystemEvent, XeroAccount
from accounting.services.accounts_sync import last_sync_info, sync_accounts
from accounting.services.exceptions import XeroApiError
from accounting.services.tenant import TenantContext

REMOTE = [
    {"AccountID": "a-200", "Code": "200", "Name": "Sales", "Type": "REVENUE", "Status": "ACTIVE"},
    {"AccountID": "a-450", "Code": "450", "Name": "Discounts", "Type": "EXPENSE", "Status": "ACTIVE"},
    {"AccountID": "a-090", "Code": "090", "Name": "Stripe", "Type": "BANK", "Status": "ACTIVE"},
    {"AccountID": "a-old", "Code": "999", "Name": "Old", "Type": "EXPENSE", "Status": "ARCHIVED"},
    {"AccountID": "a-blank", "Code": "", "Name": "No code", "Type": "EXPENSE", "Status": "ACTIVE"},
]


class AccountsSyncTests(TestCase):
    def setUp(self):
        self.ctx = TenantContext(tenant_id="tenant-1", tenant_name="Test Club")

    @patch("accounting.services.xero_adapter.fetch_accounts")
    def test_first_sync_adds_only_active_coded_accounts(self, fetch_accounts):
        fetch_accounts.return_value = REMOTE

        result = sync_accounts(self.ctx)

        self.assertTrue(result.success)
        self.assertEqual(result.total_accounts, 3)
        self.assertEqual(result.added, 3)
        self.assertEqual(
            sorted(XeroAccount.objects.filter(tenant_id="tenant-1").values_list("code", flat=True)),
            ["090", "200", "450"],
        )

    @patch("accounting.services.xero_adapter.fetch_accounts")
    def test_second_identical_sync_changes_nothing(self, fetch_accounts):
        fetch_accounts.return_value = REMOTE
        sync_accounts(self.ctx)

        result = sync_accounts(self.ctx)

        self.assertEqual((result.added, result.updated, result.removed), (0, 0, 0))
        self.assertEqual(result.total_accounts, 3)

    @patch("accounting.services.xero_adapter.fetch_accounts")
    def test_renamed_and_removed_accounts(self, fetch_accounts):
        fetch_accounts.return_value = REMOTE
        sync_accounts(self.ctx)

        renamed = [dict(acc) for acc in REMOTE if acc["AccountID"] != "a-450"]
        renamed[0]["Name"] = "Membership Sales"
        fetch_accounts.return_value = renamed

        result = sync_accounts(self.ctx)

        self.assertEqual((result.added, result.updated, result.removed), (0, 1, 1))
        self.assertFalse(XeroAccount.objects.filter(xero_account_id="a-450").exists())
        self.assertEqual(XeroAccount.objects.get(xero_account_id="a-200").name, "Membership Sales")

    @patch("accounting.services.xero_adapter.fetch_accounts")
    def test_tenants_are_kept_apart(self, fetch_accounts):
        fetch_accounts.return_value = REMOTE
        sync_accounts(self.ctx)
        sync_accounts(TenantContext(tenant_id="tenant-2"))

        fetch_accounts.return_value = []
        result = sync_accounts(self.ctx)

        self.assertEqual(result.removed, 3)
        self.assertEqual(XeroAccount.objects.filter(tenant_id="tenant-2").count(), 3)

    @patch("accounting.services.xero_adapter.fetch_accounts")
    def test_remote_failure_is_reported_not_raised(self, fetch_accounts):
        fetch_accounts.side_effect = XeroApiError("Unauthorized", status_code=401)

        result = sync_accounts(self.ctx, triggered_by="test")

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Unauthorized")
        event = SystemEvent.objects.get(event_type=SystemEvent.EVENT_XERO_ACCOUNTS_SYNC)
        self.assertEqual(event.status, SystemEvent.STATUS_FAILED)

    @patch("accounting.services.xero_adapter.fetch_accounts")
    def test_last_sync_info(self, fetch_accounts):
        self.assertIsNone(last_sync_info("tenant-1"))

        fetch_accounts.return_value = REMOTE
        sync_accounts(self.ctx)

        info = last_sync_info("tenant-1")
        self.assertEqual(info["total_accounts"], 3)
        self.assertIsNotNone(info["last_synced_at"])

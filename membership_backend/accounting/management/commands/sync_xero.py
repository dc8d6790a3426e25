# accounting/management/commands/sync_xero.py

"""
Run one Xero sync pass (cron entry point).

    python manage.py sync_xero
    python manage.py sync_xero --tenant <tenant-id> --batch-size 50
    python manage.py sync_xero --dry-run
"""

from __future__ import annotations

from django.core.management.base import BaseCommand

from accounting.services.sync_orchestrator import eligible_counts, run_sync


class Command(BaseCommand):
    help = "Push eligible staging invoices and payments to Xero."

    def add_arguments(self, parser):
        parser.add_argument("--tenant", dest="tenant", help="Xero tenant id (defaults to the configured tenant)")
        parser.add_argument("--batch-size", dest="batch_size", type=int, help="Rows claimed per batch")
        parser.add_argument("--dry-run", action="store_true", help="Only print what would be processed")

    def handle(self, *args, **options):
        tenant = options.get("tenant") or None

        if options.get("dry_run"):
            counts = eligible_counts(tenant_id=tenant)
            self.stdout.write(
                f"DRY RUN: {counts['invoices']} invoice(s), {counts['payments']} payment(s) eligible"
            )
            return

        summary = run_sync(tenant=tenant, batch_size=options.get("batch_size"), triggered_by="cron")

        if summary.error:
            self.stderr.write(self.style.ERROR(f"Sync skipped: {summary.error}"))
            raise SystemExit(1)

        inv = summary.invoices.as_dict()
        pay = summary.payments.as_dict()
        self.stdout.write(
            f"Invoices: synced={inv['synced']} failed={inv['failed']} skipped={inv['skipped']} | "
            f"Payments: synced={pay['synced']} failed={pay['failed']} skipped={pay['skipped']}"
        )
        if summary.released:
            self.stdout.write(f"Released {summary.released} expired claim(s)")
        if summary.rate_limited:
            self.stdout.write(self.style.WARNING("Stopped early: Xero rate limit reached"))
        else:
            self.stdout.write(self.style.SUCCESS("Done"))

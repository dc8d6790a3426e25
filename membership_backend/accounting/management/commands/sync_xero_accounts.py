# accounting/management/commands/sync_xero_accounts.py

from django.core.management.base import BaseCommand

from accounting.services.accounts_sync import sync_accounts
from accounting.services.exceptions import XeroConnectionError
from accounting.services.tenant import resolve_tenant


class Command(BaseCommand):
    help = "Refresh the cached Xero chart of accounts."

    def add_arguments(self, parser):
        parser.add_argument("--tenant", dest="tenant", help="Xero tenant id (defaults to the configured tenant)")

    def handle(self, *args, **options):
        try:
            ctx = resolve_tenant(options.get("tenant") or None)
        except XeroConnectionError as exc:
            self.stderr.write(self.style.ERROR(str(exc)))
            raise SystemExit(1)

        result = sync_accounts(ctx, triggered_by="cron")
        if not result.success:
            self.stderr.write(self.style.ERROR(f"Accounts sync failed: {result.error}"))
            raise SystemExit(1)

        self.stdout.write(
            self.style.SUCCESS(
                f"{result.total_accounts} accounts (added={result.added} updated={result.updated} removed={result.removed})"
            )
        )

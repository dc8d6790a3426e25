# accounting/management/commands/seed_system_codes.py

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction

from accounting.models import SystemAccountingCode


class Command(BaseCommand):
    help = "Ensure the accounting codes the sync pipeline needs exist (Stripe clearing bank account)."

    def add_arguments(self, parser):
        parser.add_argument("--bank-code", dest="bank_code", help="Override the Stripe bank account code")

    @transaction.atomic
    def handle(self, *args, **options):
        code = (options.get("bank_code") or settings.XERO["DEFAULT_BANK_ACCOUNT_CODE"]).strip()

        row, created = SystemAccountingCode.objects.get_or_create(
            code_type=SystemAccountingCode.CODE_STRIPE_BANK_ACCOUNT,
            defaults={"accounting_code": code, "description": "Stripe clearing bank account"},
        )
        if not created and options.get("bank_code") and row.accounting_code != code:
            row.accounting_code = code
            row.save()
            self.stdout.write(f"Updated {row.code_type} -> {code}")
        elif created:
            self.stdout.write(f"Created {row.code_type} = {code}")
        else:
            self.stdout.write(f"{row.code_type} already set ({row.accounting_code})")

        self.stdout.write(self.style.SUCCESS("System accounting codes ready"))

# accounting/apps.py

"""
ACCOUNTING APP CONFIG

Xero reconciliation:
- Staging store (invoices, credit notes, payments)
- Chart-of-accounts cache
- Sync orchestrator + admin endpoints
"""

from django.apps import AppConfig


class AccountingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "accounting"
    verbose_name = "Accounting (Xero)"

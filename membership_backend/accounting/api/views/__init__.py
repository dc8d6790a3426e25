# accounting/api/views/__init__.py

"""
accounting.api.views package

Do NOT import accounting.api.urls from here to avoid circular imports.
"""

from accounting.api.views.xero_read import StagingInvoiceListView, XeroAccountsView, XeroStatusView
from accounting.api.views.xero_sync import StagingRetryView, XeroAccountsSyncView, XeroSyncView

__all__ = [
    "XeroSyncView",
    "XeroAccountsSyncView",
    "StagingRetryView",
    "XeroAccountsView",
    "StagingInvoiceListView",
    "XeroStatusView",
]

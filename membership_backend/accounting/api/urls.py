# accounting/api/urls.py

from django.urls import path

from accounting.api.views.xero_read import StagingInvoiceListView, XeroAccountsView, XeroStatusView
from accounting.api.views.xero_sync import StagingRetryView, XeroAccountsSyncView, XeroSyncView

app_name = "accounting"

urlpatterns = [
    # Actions (accounting.sync)
    path("xero/sync/", XeroSyncView.as_view(), name="xero-sync"),
    path("xero/sync-accounts/", XeroAccountsSyncView.as_view(), name="xero-sync-accounts"),
    path("xero/staging/retry/", StagingRetryView.as_view(), name="xero-staging-retry"),
    # Read-only (accounting.view)
    path("xero/accounts/", XeroAccountsView.as_view(), name="xero-accounts"),
    path("xero/staging/", StagingInvoiceListView.as_view(), name="xero-staging"),
    path("xero/status/", XeroStatusView.as_view(), name="xero-status"),
]

# accounting/api/serializers/__init__.py

from accounting.api.serializers.xero import (
    AccountsSyncRequestSerializer,
    RetryRequestSerializer,
    StagingInvoiceSerializer,
    SyncRequestSerializer,
    SystemEventSerializer,
    XeroAccountSerializer,
)

__all__ = [
    "XeroAccountSerializer",
    "StagingInvoiceSerializer",
    "SystemEventSerializer",
    "SyncRequestSerializer",
    "AccountsSyncRequestSerializer",
    "RetryRequestSerializer",
]

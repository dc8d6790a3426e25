# accounting/models/__init__.py

"""
ACCOUNTING MODELS PACKAGE EXPORTS

Note:
- Keep this file *imports-only* (no business logic).
- Do NOT import services from models anywhere (models must stay pure).
"""

from accounting.models.staging import StagingInvoice, StagingLineItem, StagingPayment, SyncTrackedModel
from accounting.models.system_event import SystemEvent
from accounting.models.xero import (
    SystemAccountingCode,
    XeroAccount,
    XeroConnection,
    XeroContact,
    XeroSyncLog,
)

__all__ = [
    "SyncTrackedModel",
    "StagingInvoice",
    "StagingLineItem",
    "StagingPayment",
    "XeroConnection",
    "XeroContact",
    "XeroAccount",
    "XeroSyncLog",
    "SystemAccountingCode",
    "SystemEvent",
]

# payments/urls.py
"""
PAYMENTS API URLS

Base path (mounted in backend/urls.py):
    /api/payments/

Admin (refunds.manage):
- POST /api/payments/refunds/preview/
- POST /api/payments/refunds/stage/
- POST /api/payments/refunds/confirm/
- POST /api/payments/refunds/cancel/
- GET  /api/payments/refunds/

Stripe (signature-authenticated):
- POST /api/payments/stripe/webhook/
"""

from __future__ import annotations

from django.urls import path

from payments.views.refunds import (
    RefundCancelView,
    RefundConfirmView,
    RefundListView,
    RefundPreviewView,
    RefundStageView,
)
from payments.views.stripe_webhook import StripeWebhookView

app_name = "payments"

urlpatterns = [
    path("refunds/preview/", RefundPreviewView.as_view(), name="refund-preview"),
    path("refunds/stage/", RefundStageView.as_view(), name="refund-stage"),
    path("refunds/confirm/", RefundConfirmView.as_view(), name="refund-confirm"),
    path("refunds/cancel/", RefundCancelView.as_view(), name="refund-cancel"),
    path("refunds/", RefundListView.as_view(), name="refund-list"),
    path("stripe/webhook/", StripeWebhookView.as_view(), name="stripe-webhook"),
]

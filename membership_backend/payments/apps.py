# payments/apps.py

"""
PAYMENTS APP CONFIG

Stripe money movement:
- Payment + Refund records (server authoritative, integer cents)
- Stripe webhook (payment_intent.* / charge.refunded)
- Checkout, refund and category-change services
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

# accounting/api/filters.py

import django_filters

from accounting.models import StagingInvoice


class StagingInvoiceFilter(django_filters.FilterSet):
    staged_from = django_filters.DateFilter(field_name="staged_at", lookup_expr="date__gte")
    staged_to = django_filters.DateFilter(field_name="staged_at", lookup_expr="date__lte")
    user = django_filters.UUIDFilter(field_name="user_id")
    payment = django_filters.UUIDFilter(field_name="payment_id")

    class Meta:
        model = StagingInvoice
        fields = ("sync_status", "invoice_type", "reason", "tenant_id")

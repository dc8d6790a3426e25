# payments/filters.py

import django_filters

from payments.models import Refund


class RefundFilter(django_filters.FilterSet):
    created_from = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    created_to = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")

    class Meta:
        model = Refund
        fields = ("status", "refund_type", "payment", "user")

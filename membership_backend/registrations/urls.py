# registrations/urls.py
"""
REGISTRATIONS API URLS

Base path (mounted in backend/urls.py):
    /api/registrations/

- POST /api/registrations/checkout/                (member)
- POST /api/registrations/memberships/checkout/    (member)
- POST /api/registrations/change-category/         (registrations.manage)
"""

from django.urls import path

from registrations.views.category_change import CategoryChangeView
from registrations.views.checkout import MembershipCheckoutView, RegistrationCheckoutView

app_name = "registrations"

urlpatterns = [
    path("checkout/", RegistrationCheckoutView.as_view(), name="registration-checkout"),
    path("memberships/checkout/", MembershipCheckoutView.as_view(), name="membership-checkout"),
    path("change-category/", CategoryChangeView.as_view(), name="change-category"),
]

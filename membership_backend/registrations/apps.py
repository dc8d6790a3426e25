# registrations/apps.py

"""
REGISTRATIONS APP CONFIG

Seasons, memberships and event/team registrations:
- Catalogue (Season, Membership, Registration, RegistrationCategory)
- Member holdings (UserMembership, UserRegistration)
- Checkout + admin category change endpoints
"""

from django.apps import AppConfig


class RegistrationsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "registrations"
    verbose_name = "Registrations"

# registrations/models/__init__.py

from registrations.models.catalogue import Membership, Registration, RegistrationCategory, Season
from registrations.models.holdings import UserMembership, UserRegistration

__all__ = [
    "Season",
    "Membership",
    "Registration",
    "RegistrationCategory",
    "UserMembership",
    "UserRegistration",
]

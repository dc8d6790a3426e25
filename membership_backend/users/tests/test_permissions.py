from types import SimpleNamespace

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APIRequestFactory

from permissions.roles import (
    ALL_CAPABILITIES,
    CAP_ACCOUNTING_SYNC,
    CAP_ACCOUNTING_VIEW,
    CAP_REFUNDS_MANAGE,
    CAP_REGISTRATIONS_MANAGE,
    HasCapability,
)

User = get_user_model()


class CapabilityPermissionTests(TestCase):
    """
    Tests for capability-based permissions.

    GUARANTEES:
    - Each role gets exactly its capabilities
    - Members get none
    - Views without a required capability are closed
    """

    def setUp(self):
        self.factory = APIRequestFactory()

        self.admin = User.objects.create_user(email="admin@example.com", password="pass", role="admin")
        self.finance = User.objects.create_user(email="finance@example.com", password="pass", role="finance")
        self.staff = User.objects.create_user(email="staff@example.com", password="pass", role="staff")
        self.member = User.objects.create_user(email="member@example.com", password="pass", role="member")

    # --------------------------------------------------
    # Helpers
    # --------------------------------------------------

    def _allowed(self, user, capability):
        request = self.factory.get("/")
        request.user = user
        view = SimpleNamespace(required_capability=capability)
        return HasCapability().has_permission(request, view)

    # --------------------------------------------------
    # ROLES
    # --------------------------------------------------

    def test_admin_has_every_capability(self):
        for capability in ALL_CAPABILITIES:
            self.assertTrue(self._allowed(self.admin, capability))

    def test_finance_permissions(self):
        self.assertTrue(self._allowed(self.finance, CAP_REFUNDS_MANAGE))
        self.assertTrue(self._allowed(self.finance, CAP_ACCOUNTING_SYNC))
        self.assertTrue(self._allowed(self.finance, CAP_ACCOUNTING_VIEW))
        self.assertFalse(self._allowed(self.finance, CAP_REGISTRATIONS_MANAGE))

    def test_staff_permissions(self):
        self.assertTrue(self._allowed(self.staff, CAP_REGISTRATIONS_MANAGE))
        self.assertTrue(self._allowed(self.staff, CAP_ACCOUNTING_VIEW))
        self.assertFalse(self._allowed(self.staff, CAP_REFUNDS_MANAGE))
        self.assertFalse(self._allowed(self.staff, CAP_ACCOUNTING_SYNC))

    def test_member_has_no_capabilities(self):
        for capability in ALL_CAPABILITIES:
            self.assertFalse(self._allowed(self.member, capability))

    def test_superuser_gets_everything(self):
        root = User.objects.create_superuser(email="root@example.com", password="pass", role="member")
        self.assertTrue(self._allowed(root, CAP_REFUNDS_MANAGE))

    # --------------------------------------------------
    # DENY BY DEFAULT
    # --------------------------------------------------

    def test_missing_required_capability_denies(self):
        self.assertFalse(self._allowed(self.admin, None))

    def test_anonymous_denied(self):
        self.assertFalse(self._allowed(AnonymousUser(), CAP_ACCOUNTING_VIEW))


class UserEndpointTests(TestCase):
    def setUp(self):
        self.api = APIClient()

    def test_register_always_creates_member(self):
        res = self.api.post(
            reverse("users:register"),
            {"email": "new@example.com", "password": "longenough", "role": "admin"},
            format="json",
        )

        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(User.objects.get(email="new@example.com").role, "member")

    def test_register_rejects_duplicate_email(self):
        User.objects.create_user(email="taken@example.com", password="pass")
        res = self.api.post(
            reverse("users:register"),
            {"email": "TAKEN@example.com", "password": "longenough"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_me_lists_capabilities(self):
        finance = User.objects.create_user(email="f@example.com", password="pass", role="finance")
        self.api.force_authenticate(finance)

        res = self.api.get(reverse("users:me"))

        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(
            res.data["capabilities"],
            sorted([CAP_ACCOUNTING_SYNC, CAP_ACCOUNTING_VIEW, CAP_REFUNDS_MANAGE]),
        )
        self.assertFalse(res.data["has_saved_payment_method"])

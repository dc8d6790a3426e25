# registrations/views/category_change.py

"""
PATH: registrations/views/category_change.py

POST /api/registrations/change-category/

Moves a paid registration to another category of the same registration.
The price difference is charged, refunded, or (when zero) only staged.
"""

from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounting.services.exceptions import MissingAccountingCodeError, StagingError
from backend.api_errors import error_response
from payments.services.category_change import change_category
from payments.services.exceptions import CategoryChangeError, PaymentGatewayError
from permissions.roles import CAP_REGISTRATIONS_MANAGE, HasCapability
from registrations.models import RegistrationCategory, UserRegistration
from registrations.serializers import CategoryChangeSerializer

logger = logging.getLogger(__name__)


class CategoryChangeView(APIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_REGISTRATIONS_MANAGE

    @extend_schema(tags=["registrations"], request=CategoryChangeSerializer, responses={200: dict})
    def post(self, request):
        serializer = CategoryChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        entry = get_object_or_404(UserRegistration, pk=data["user_registration_id"])
        new_category = get_object_or_404(RegistrationCategory, pk=data["new_category_id"])

        try:
            result = change_category(
                user_registration=entry,
                new_category=new_category,
                reason=data["reason"],
                user=request.user,
            )
        except CategoryChangeError as exc:
            return error_response(code="CATEGORY_CHANGE_FAILED", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
        except PaymentGatewayError as exc:
            return error_response(code="PAYMENT_GATEWAY_ERROR", message=str(exc), http_status=status.HTTP_502_BAD_GATEWAY)
        except MissingAccountingCodeError as exc:
            return error_response(code="ACCOUNTING_CODE_MISSING", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
        except StagingError as exc:
            return error_response(code="STAGING_FAILED", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
        except Exception:
            logger.exception("Unexpected category change error", extra={"user_registration_id": str(entry.id)})
            return error_response(
                code="INTERNAL_ERROR",
                message="Category change could not be processed",
                http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(result, status=status.HTTP_200_OK)

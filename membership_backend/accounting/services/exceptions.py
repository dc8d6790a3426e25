# accounting/services/exceptions.py

"""
ACCOUNTING SERVICE ERRORS

Centralized domain errors for staging + Xero sync services.
"""

from __future__ import annotations

RATE_LIMIT_MARKERS = ("rate limit", "429", "too many requests", "quota exceeded")


class AccountingServiceError(Exception):
    """Base exception for all accounting service failures."""


class MissingAccountingCodeError(AccountingServiceError):
    """Raised when a line cannot be staged because its accounting code is not configured."""


class StagingError(AccountingServiceError):
    """Raised when a staging record cannot be created or is not in a usable state."""


class StagingMetadataError(StagingError):
    """Raised when staging metadata is missing fields or has an unknown kind."""


class XeroConnectionError(AccountingServiceError):
    """Raised when no usable Xero tenant connection exists."""


class XeroAuthError(XeroConnectionError):
    """Raised when the Xero tokens cannot be refreshed (connection deactivated)."""


class XeroApiError(AccountingServiceError):
    """
    Raised when a Xero API call fails.

    Carries the HTTP status and any validation messages Xero returned, so
    the orchestrator can persist a readable sync_error.
    """

    def __init__(self, message: str, *, status_code: int | None = None, validation_errors=None, response=None):
        super().__init__(message)
        self.status_code = status_code
        self.validation_errors = list(validation_errors or [])
        self.response = response

    @property
    def is_rate_limited(self) -> bool:
        if self.status_code == 429:
            return True
        return is_rate_limit_message(str(self))


def is_rate_limit_message(message: str) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)

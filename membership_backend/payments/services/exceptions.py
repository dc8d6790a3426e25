# payments/services/exceptions.py

"""
PAYMENT SERVICE ERRORS

Domain errors for checkout, webhook handling, refunds and category changes.
Views map these to {"error": {"code", "message"}} responses.
"""

from __future__ import annotations


class PaymentServiceError(Exception):
    """Base exception for payment service failures."""


class PaymentGatewayError(PaymentServiceError):
    """Raised when Stripe rejects or cannot complete a request."""


class CheckoutError(PaymentServiceError):
    pass


class WebhookProcessingError(PaymentServiceError):
    """Raised when a verified event cannot be applied; the processor will redeliver."""


# ============================================================
# REFUNDS
# ============================================================


class RefundError(PaymentServiceError):
    pass


class RefundNotAllowedError(RefundError):
    """Payment is not in a refundable state."""


class RefundAmountError(RefundError):
    """Requested amount is zero, negative or above what is still refundable."""


class RefundStateError(RefundError):
    """Refund is not in the state the operation needs (e.g. confirm a non-staged refund)."""


class CategoryChangeError(PaymentServiceError):
    pass

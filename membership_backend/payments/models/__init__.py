# payments/models/__init__.py

from payments.models.payment import Payment
from payments.models.refund import Refund

__all__ = ["Payment", "Refund"]

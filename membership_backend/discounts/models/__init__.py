# discounts/models/__init__.py

from discounts.models.discount import DiscountCategory, DiscountCode, DiscountUsage

__all__ = ["DiscountCategory", "DiscountCode", "DiscountUsage"]

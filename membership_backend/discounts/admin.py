# discounts/admin.py

from django.contrib import admin

from discounts.models import DiscountCategory, DiscountCode, DiscountUsage


@admin.register(DiscountCategory)
class DiscountCategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "accounting_code", "max_discount_per_user_per_season", "is_active")
    search_fields = ("name", "accounting_code")


@admin.register(DiscountCode)
class DiscountCodeAdmin(admin.ModelAdmin):
    list_display = ("code", "category", "percentage", "is_active")
    list_filter = ("is_active", "category")
    search_fields = ("code",)


@admin.register(DiscountUsage)
class DiscountUsageAdmin(admin.ModelAdmin):
    list_display = ("user", "discount_code", "season", "amount_saved", "used_at")
    list_filter = ("discount_category", "season")
    readonly_fields = [f.name for f in DiscountUsage._meta.fields]

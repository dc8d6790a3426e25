# registrations/admin.py

from django.contrib import admin

from registrations.models import (
    Membership,
    Registration,
    RegistrationCategory,
    Season,
    UserMembership,
    UserRegistration,
)


class RegistrationCategoryInline(admin.TabularInline):
    model = RegistrationCategory
    extra = 0


@admin.register(Season)
class SeasonAdmin(admin.ModelAdmin):
    list_display = ("name", "start_date", "end_date")


@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    list_display = ("name", "season", "is_active")
    list_filter = ("season", "is_active")
    inlines = [RegistrationCategoryInline]


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ("name", "price_monthly", "accounting_code", "is_active")


@admin.register(UserMembership)
class UserMembershipAdmin(admin.ModelAdmin):
    list_display = ("user", "membership", "valid_from", "valid_until", "payment_status")
    readonly_fields = ("stripe_payment_intent_id", "payment", "created_at")
    search_fields = ("user__email", "stripe_payment_intent_id")


@admin.register(UserRegistration)
class UserRegistrationAdmin(admin.ModelAdmin):
    list_display = ("user", "registration", "registration_category", "payment_status", "amount_paid")
    list_filter = ("payment_status", "registration")
    readonly_fields = ("payment", "registered_at", "created_at", "updated_at")
    search_fields = ("user__email",)

"""
Django admin configuration for the User model.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from authentication.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Admin configuration for User model.

    Balance columns are read-only: they are only changed through
    BalanceService by the settlement lifecycle.
    """

    list_display = (
        "email",
        "role",
        "kyc_status",
        "wallet_balance",
        "pending_payout_balance",
        "is_active",
        "date_joined",
    )
    list_filter = ("role", "kyc_status", "is_active", "is_staff")
    search_fields = ("email", "display_name")
    ordering = ("-date_joined",)
    readonly_fields = (
        "wallet_balance",
        "pending_payout_balance",
        "total_earnings",
        "total_withdrawn",
        "date_joined",
        "last_login",
    )

    fieldsets = (
        (None, {"fields": ("email", "password", "display_name")}),
        ("Marketplace", {"fields": ("role", "kyc_status")}),
        (
            "Balances",
            {
                "fields": (
                    "wallet_balance",
                    "pending_payout_balance",
                    "total_earnings",
                    "total_withdrawn",
                )
            },
        ),
        (
            "Status",
            {"fields": ("email_verified", "is_active", "is_staff", "is_superuser")},
        ),
        ("Permissions", {"fields": ("groups", "user_permissions")}),
        ("Important dates", {"fields": ("date_joined", "last_login")}),
    )
    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "role", "password1", "password2"),
            },
        ),
    )

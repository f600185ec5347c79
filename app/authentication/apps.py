"""
Authentication app: the marketplace User with its role, KYC status and
money balances.
"""

from django.apps import AppConfig


class AuthenticationConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "authentication"
    verbose_name = "Users & Balances"

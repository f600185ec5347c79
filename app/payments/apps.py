"""
Payments app configuration.

This app settles order money: escrow holds, releases and payouts,
refunds, the payment gateway adapter and its webhooks, and the
scheduled sweeps that expire, flag and refund stuck orders.
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

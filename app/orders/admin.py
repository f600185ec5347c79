"""
Django admin configuration for orders.

Settlement fields are read-only here. Money transitions must go through
EscrowLedger (see the payments admin actions) so that the phase,
projections and payment records stay consistent.
"""

from django.contrib import admin

from orders.models import FinalDelivery, Order, Rating


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_number",
        "order_type",
        "status",
        "phase",
        "amount",
        "platform_fee",
        "payout_status",
        "created_at",
    )
    list_filter = ("status", "phase", "order_type", "payout_status")
    search_fields = ("order_number", "gateway_order_id", "gateway_payment_id", "client__email", "editor__email")
    raw_id_fields = ("client", "editor")
    readonly_fields = (
        "order_number",
        "platform_fee_percentage",
        "platform_fee",
        "editor_earning",
        "phase",
        "status",
        "payment_status",
        "escrow_status",
        "chat_disabled",
        "chat_disabled_reason",
        "overdue_refunded",
        "gateway_order_id",
        "gateway_payment_id",
        "gateway_payout_id",
        "escrow_held_at",
        "escrow_released_at",
        "refund_amount",
        "refunded_at",
        "payout_status",
        "payout_amount",
        "version",
    )


@admin.register(Rating)
class RatingAdmin(admin.ModelAdmin):
    list_display = ("order", "score", "created_at")
    raw_id_fields = ("order",)


@admin.register(FinalDelivery)
class FinalDeliveryAdmin(admin.ModelAdmin):
    list_display = ("order", "token_expires_at", "confirmed_at")
    raw_id_fields = ("order",)
    exclude = ("download_token",)

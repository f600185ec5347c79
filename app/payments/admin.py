"""
Payment admin configuration.

Payments and refunds are audit records: they cannot be deleted here and
their money fields are read-only. Refund retries and wallet credits go
through RefundService via admin actions so the refund state machine and
wallet balance stay consistent.
"""

from django.contrib import admin, messages

from core.exceptions import BaseApplicationError
from payments.models import Payment, PayoutAccount, Refund, WebhookEvent
from payments.services import RefundService

__all__ = [
    "PaymentAdmin",
    "PayoutAccountAdmin",
    "RefundAdmin",
    "WebhookEventAdmin",
]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """Immutable payment records (escrow releases and refunds)."""

    list_display = [
        "transaction_id",
        "receipt_number",
        "payment_type",
        "order",
        "amount",
        "platform_fee",
        "editor_earning",
        "status",
        "created_at",
    ]
    list_filter = ["payment_type", "status", "created_at"]
    search_fields = ["transaction_id", "receipt_number", "order__order_number"]
    raw_id_fields = ["order", "payer", "payee"]
    readonly_fields = [
        "id",
        "transaction_id",
        "receipt_number",
        "payment_type",
        "amount",
        "platform_fee",
        "editor_earning",
        "status",
        "order_snapshot",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    list_display = ["user", "stripe_account_id", "status", "payouts_enabled", "created_at"]
    list_filter = ["status", "payouts_enabled"]
    search_fields = ["stripe_account_id", "user__email"]
    raw_id_fields = ["user"]
    readonly_fields = ["id", "created_at", "updated_at"]


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    """
    Admin configuration for Refund.

    Actions:
        retry_refunds: send FAILED refunds to the gateway again
        credit_refunds_to_wallet: skip the gateway, credit the wallet
    """

    list_display = [
        "id",
        "order",
        "refund_amount",
        "refund_percentage",
        "status",
        "reason",
        "retry_count",
        "completed_at",
        "created_at",
    ]
    list_filter = ["status", "reason", "initiated_by", "created_at"]
    search_fields = ["id", "gateway_refund_id", "order__order_number", "client__email"]
    raw_id_fields = ["order", "client"]
    readonly_fields = [
        "id",
        "refund_amount",
        "refund_percentage",
        "status",
        "gateway_refund_id",
        "gateway_refund_status",
        "wallet_credited",
        "wallet_transaction_id",
        "original_gateway_order_id",
        "original_gateway_payment_id",
        "original_amount",
        "original_paid_at",
        "retry_count",
        "next_retry_at",
        "failure_reason",
        "failure_code",
        "completed_at",
        "failed_at",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["retry_refunds", "credit_refunds_to_wallet"]

    fieldsets = (
        (None, {"fields": ("id", "order", "client", "status")}),
        ("Amount", {"fields": ("refund_amount", "refund_percentage", "refund_method")}),
        ("Reason", {"fields": ("reason", "reason_details", "initiated_by")}),
        (
            "Original Payment",
            {
                "fields": (
                    "original_gateway_order_id",
                    "original_gateway_payment_id",
                    "original_amount",
                    "original_paid_at",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Gateway / Wallet",
            {
                "fields": (
                    "gateway_refund_id",
                    "gateway_refund_status",
                    "wallet_credited",
                    "wallet_transaction_id",
                ),
            },
        ),
        (
            "Retries",
            {
                "fields": (
                    "retry_count",
                    "next_retry_at",
                    "failure_reason",
                    "failure_code",
                    "failed_at",
                ),
                "classes": ("collapse",),
            },
        ),
        ("Timestamps", {"fields": ("completed_at", "created_at", "updated_at", "version")}),
    )

    @admin.action(description="Retry selected failed refunds")
    def retry_refunds(self, request, queryset):
        self._run_action(request, queryset, RefundService.retry)

    @admin.action(description="Credit selected refunds to client wallet")
    def credit_refunds_to_wallet(self, request, queryset):
        self._run_action(request, queryset, RefundService.force_wallet_credit)

    def _run_action(self, request, queryset, operation):
        succeeded = 0
        for refund in queryset:
            try:
                result = operation(refund)
            except BaseApplicationError as e:
                self.message_user(request, f"Refund {refund.id}: {e.message}", messages.ERROR)
                continue
            if result:
                succeeded += 1
            else:
                self.message_user(request, f"Refund {refund.id}: {result.error}", messages.WARNING)
        if succeeded:
            self.message_user(request, f"{succeeded} refund(s) processed", messages.SUCCESS)

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for refunds (audit trail)."""
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "event_id",
        "event_type",
        "payload",
        "processed_at",
        "error_message",
        "retry_count",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

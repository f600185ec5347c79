"""
DRF serializers for the payments API.

Request serializers accept the camelCase keys the client apps send and
map them onto snake_case ``validated_data`` keys via ``source``.
Response serializers are read-only projections of orders, refunds,
payment records and deliveries.

Related files:
    - views.py: Payment, delivery, refund and dispute API views
    - services/: EscrowLedger, RefundService, DeliveryService
"""

from __future__ import annotations

from rest_framework import serializers

from orders.models import FinalDelivery, Order
from orders.states import DisputeResolution
from payments.models import Payment, Refund
from payments.state_machines import RefundReason


# =============================================================================
# Requests
# =============================================================================


class VerifyPaymentSerializer(serializers.Serializer):
    """Client-reported payment to verify and hold in escrow."""

    gatewayOrderId = serializers.CharField(source="gateway_order_id", max_length=100)
    paymentId = serializers.CharField(source="payment_id", max_length=100)
    signature = serializers.CharField(max_length=128)


class ConfirmDeliverySerializer(serializers.Serializer):
    """Client's download confirmation."""

    confirmText = serializers.CharField(source="confirm_text", max_length=20)
    token = serializers.CharField(max_length=64)


class RefundInitiateSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=RefundReason.choices)
    reasonDetails = serializers.CharField(
        source="reason_details",
        required=False,
        allow_blank=True,
        default="",
    )


class OpenDisputeSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)


class ResolveDisputeSerializer(serializers.Serializer):
    """
    Admin dispute resolution.

    ``splitPercent`` is the client's share and only applies to SPLIT.
    """

    resolution = serializers.ChoiceField(choices=DisputeResolution.choices)
    splitPercent = serializers.IntegerField(
        source="split_percent",
        required=False,
        default=50,
        min_value=1,
        max_value=99,
    )


# =============================================================================
# Responses
# =============================================================================


class OrderSettlementSerializer(serializers.ModelSerializer):
    """Order fields that describe where its money is."""

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "status",
            "phase",
            "payment_status",
            "escrow_status",
            "amount",
            "platform_fee",
            "editor_earning",
            "gateway_order_id",
            "refund_amount",
            "payout_status",
            "payout_amount",
            "dispute_resolution",
            "escrow_held_at",
            "escrow_released_at",
            "completed_at",
            "cancelled_at",
            "version",
        ]
        read_only_fields = fields


class InitiatePaymentResponseSerializer(serializers.Serializer):
    order = OrderSettlementSerializer()
    gateway_order_id = serializers.CharField()
    amount = serializers.IntegerField()
    currency = serializers.CharField()
    client_secret = serializers.CharField(allow_null=True)


class VerifyPaymentResponseSerializer(serializers.Serializer):
    order = OrderSettlementSerializer()
    already_confirmed = serializers.BooleanField()


class RefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = Refund
        fields = [
            "id",
            "order",
            "refund_amount",
            "refund_percentage",
            "reason",
            "refund_method",
            "initiated_by",
            "status",
            "gateway_refund_id",
            "wallet_credited",
            "retry_count",
            "next_retry_at",
            "failure_reason",
            "completed_at",
            "created_at",
        ]
        read_only_fields = fields


class WalletSerializer(serializers.Serializer):
    balance = serializers.IntegerField()
    last_updated = serializers.DateTimeField()


class RefundStatusTotalsSerializer(serializers.Serializer):
    count = serializers.IntegerField()
    amount = serializers.IntegerField()


class RefundStatsSerializer(serializers.Serializer):
    """Refund counts and amounts over the last ``days`` days, per status and in total."""

    days = serializers.IntegerField()
    total = RefundStatusTotalsSerializer()
    by_status = serializers.DictField(child=RefundStatusTotalsSerializer())


class PaymentSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "order",
            "order_number",
            "payer",
            "payee",
            "payment_type",
            "amount",
            "platform_fee",
            "editor_earning",
            "status",
            "transaction_id",
            "receipt_number",
            "created_at",
        ]
        read_only_fields = fields


class MonthlyPaymentSerializer(serializers.Serializer):
    month = serializers.DateTimeField()
    amount = serializers.IntegerField()
    count = serializers.IntegerField()


class PaymentStatsSerializer(serializers.Serializer):
    total_transactions = serializers.IntegerField()
    total_amount = serializers.IntegerField()
    total_earnings = serializers.IntegerField()
    total_fees = serializers.IntegerField()
    total_refunded = serializers.IntegerField()
    monthly = MonthlyPaymentSerializer(many=True)


class ReceiptPartySerializer(serializers.Serializer):
    name = serializers.CharField(source="get_full_name")
    email = serializers.EmailField()


class ReceiptSerializer(serializers.ModelSerializer):
    """
    Printable receipt for a payment record.

    Order details come from the snapshot taken at settlement, so the
    receipt does not change if the order is edited later.
    """

    date = serializers.DateTimeField(source="created_at")
    payer = ReceiptPartySerializer()
    payee = ReceiptPartySerializer()
    order = serializers.JSONField(source="order_snapshot")

    class Meta:
        model = Payment
        fields = [
            "receipt_number",
            "transaction_id",
            "date",
            "payment_type",
            "payer",
            "payee",
            "order",
            "amount",
            "platform_fee",
            "editor_earning",
        ]
        read_only_fields = fields


class FinalDeliveryStatusSerializer(serializers.ModelSerializer):
    submitted_at = serializers.DateTimeField(source="created_at")

    class Meta:
        model = FinalDelivery
        fields = ["file_url", "submitted_at", "token_expires_at", "confirmed_at"]
        read_only_fields = fields


class DeliveryStatusSerializer(serializers.Serializer):
    """
    Delivery progress of an order.

    ``download_token`` is only filled in for the order's client.
    """

    order_status = serializers.CharField()
    phase = serializers.CharField()
    delivery = FinalDeliveryStatusSerializer(allow_null=True)
    download_token = serializers.CharField(allow_null=True)


class ErrorResponseSerializer(serializers.Serializer):
    error = serializers.CharField()
    error_code = serializers.CharField()
    details = serializers.DictField(required=False)

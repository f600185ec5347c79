"""
Views for the payments API.

Endpoints:
    POST /api/v1/payments/orders/{order_id}/initiate/ - Create the gateway order
    POST /api/v1/payments/verify/ - Verify a payment and hold it in escrow
    POST /api/v1/delivery/{order_id}/confirm/ - Confirm download, release escrow
    POST /api/v1/refunds/initiate/{order_id}/ - Admin refund
    POST /api/v1/refunds/{refund_id}/retry/ - Admin retry of a failed refund
    POST /api/v1/refunds/{refund_id}/force-wallet/ - Admin wallet credit
    POST /api/v1/orders/{order_id}/dispute/ - Either party opens a dispute
    POST /api/v1/disputes/{order_id}/resolve/ - Admin resolves a dispute
    GET /api/v1/delivery/{order_id}/status/ - Delivery progress
    GET /api/v1/refunds/my/ - The client's refunds
    GET /api/v1/refunds/wallet/ - The client's wallet balance
    GET /api/v1/refunds/order/{order_id}/ - Refunds for an order
    GET /api/v1/refunds/admin/all/ - Every refund (admin)
    GET /api/v1/refunds/admin/stats/ - 30-day refund totals (admin)
    GET /api/v1/payments/history/ - Payment records of the user
    GET /api/v1/payments/stats/ - Payment totals of the user
    GET /api/v1/payments/{id}/ - One payment record
    GET /api/v1/payments/{id}/receipt/ - Receipt for a payment record

Service errors map to HTTP statuses in ``error_response``. An operation
on an order that is already settled answers 200 so client retries are
harmless.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncMonth
from django.shortcuts import get_object_or_404
from django.utils import timezone
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import BasePermission, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from orders.models import FinalDelivery, Order
from payments.exceptions import AlreadySettledError, SignatureInvalidError
from payments.models import Payment, Refund
from payments.serializers import (
    ConfirmDeliverySerializer,
    DeliveryStatusSerializer,
    ErrorResponseSerializer,
    InitiatePaymentResponseSerializer,
    OpenDisputeSerializer,
    OrderSettlementSerializer,
    PaymentSerializer,
    PaymentStatsSerializer,
    ReceiptSerializer,
    RefundInitiateSerializer,
    RefundSerializer,
    RefundStatsSerializer,
    ResolveDisputeSerializer,
    VerifyPaymentResponseSerializer,
    VerifyPaymentSerializer,
    WalletSerializer,
)
from payments.services import DeliveryService, EscrowLedger, RefundService
from payments.state_machines import PaymentRecordStatus, PaymentType, RefundInitiator, RefundStatus

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE_BODY = {
    "error": "Payment service is temporarily unavailable",
    "error_code": "SERVICE_UNAVAILABLE",
}


def error_response(exc: BaseApplicationError) -> Response:
    """
    Translate a service exception into an API response.

    AlreadySettledError -> 200 (idempotent no-op)
    ValidationError, SignatureInvalidError -> 400
    PermissionDeniedError -> 403
    NotFoundError -> 404
    ConflictError (stale transition, invalid state) -> 409
    anything else -> 503 with a generic body
    """
    if isinstance(exc, AlreadySettledError):
        return Response({"status": "already_settled", **exc.to_dict()}, status=status.HTTP_200_OK)
    if isinstance(exc, (ValidationError, SignatureInvalidError)):
        return Response(exc.to_dict(), status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, PermissionDeniedError):
        return Response(exc.to_dict(), status=status.HTTP_403_FORBIDDEN)
    if isinstance(exc, NotFoundError):
        return Response(exc.to_dict(), status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, ConflictError):
        return Response(exc.to_dict(), status=status.HTTP_409_CONFLICT)

    logger.error("Payment operation failed: %s", exc, extra={"error_code": exc.error_code})
    return Response(SERVICE_UNAVAILABLE_BODY, status=status.HTTP_503_SERVICE_UNAVAILABLE)


class IsPlatformAdmin(BasePermission):
    """Marketplace admins and Django staff."""

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.is_platform_admin)


ERROR_RESPONSES = {
    400: OpenApiResponse(ErrorResponseSerializer, description="Rejected input"),
    403: OpenApiResponse(ErrorResponseSerializer, description="Not allowed"),
    404: OpenApiResponse(description="Order not found"),
    409: OpenApiResponse(ErrorResponseSerializer, description="Order changed concurrently"),
    503: OpenApiResponse(ErrorResponseSerializer, description="Gateway unavailable"),
}


# =============================================================================
# Payment
# =============================================================================


class InitiatePaymentView(APIView):
    """
    Create the gateway order for an order awaiting payment.

    URL: /api/v1/payments/orders/{order_id}/initiate/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Initiate payment",
        description=(
            "Creates a gateway order for the full order amount. The client "
            "completes payment with the returned client secret and then calls "
            "the verify endpoint."
        ),
        tags=["Payments"],
        request=None,
        responses={200: InitiatePaymentResponseSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, order_id):
        order = get_object_or_404(Order, pk=order_id)
        if order.client_id != request.user.pk:
            return Response(
                {"error": "Only the order's client can pay for it", "error_code": "NOT_ORDER_CLIENT"},
                status=status.HTTP_403_FORBIDDEN,
            )

        try:
            result = EscrowLedger.initiate(order)
        except BaseApplicationError as e:
            return error_response(e)

        gateway_order = result.gateway_order
        return Response(
            InitiatePaymentResponseSerializer(
                {
                    "order": result.order,
                    "gateway_order_id": gateway_order.gateway_order_id,
                    "amount": gateway_order.amount,
                    "currency": gateway_order.currency,
                    "client_secret": gateway_order.client_secret,
                }
            ).data
        )


class VerifyPaymentView(APIView):
    """
    Verify a payment the client reports as completed.

    URL: /api/v1/payments/verify/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Verify payment",
        description=(
            "Checks the payment signature and the payment status with the "
            "gateway, then holds the funds in escrow. Verifying the same "
            "payment twice returns alreadyConfirmed without side effects."
        ),
        tags=["Payments"],
        request=VerifyPaymentSerializer,
        responses={200: VerifyPaymentResponseSerializer, **ERROR_RESPONSES},
    )
    def post(self, request):
        """
        Request body:
            {
                "gatewayOrderId": "pi_...",
                "paymentId": "ch_...",
                "signature": "hex hmac"
            }
        """
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = EscrowLedger.confirm(
                data["gateway_order_id"],
                data["payment_id"],
                data["signature"],
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(
            VerifyPaymentResponseSerializer(
                {"order": result.order, "already_confirmed": result.already_confirmed}
            ).data
        )


# =============================================================================
# Delivery
# =============================================================================


class ConfirmDeliveryView(APIView):
    """
    Client confirms the final download; releases the escrow.

    URL: /api/v1/delivery/{order_id}/confirm/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Confirm download",
        description=(
            "Requires the literal text CONFIRM, a valid download token and a "
            "rating. Completes the order and pays out the editor."
        ),
        tags=["Delivery"],
        request=ConfirmDeliverySerializer,
        responses={200: OrderSettlementSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, order_id):
        """
        Request body:
            {
                "confirmText": "CONFIRM",
                "token": "download token"
            }
        """
        order = get_object_or_404(Order, pk=order_id)
        serializer = ConfirmDeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = DeliveryService.confirm_download(
                order,
                request.user,
                serializer.validated_data["confirm_text"],
                serializer.validated_data["token"],
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(OrderSettlementSerializer(result.order).data)


# =============================================================================
# Refunds (admin)
# =============================================================================


class RefundInitiateView(APIView):
    """
    Admin refund of a funded order at the stage-based percentage.

    URL: /api/v1/refunds/initiate/{order_id}/
    """

    permission_classes = [IsPlatformAdmin]

    @extend_schema(
        summary="Initiate refund",
        tags=["Refunds"],
        request=RefundInitiateSerializer,
        responses={201: RefundSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, order_id):
        """
        Request body:
            {
                "reason": "admin_initiated",
                "reasonDetails": "optional free text"
            }
        """
        order = get_object_or_404(Order, pk=order_id)
        serializer = RefundInitiateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            refund = RefundService.initiate(
                order,
                reason=serializer.validated_data["reason"],
                reason_details=serializer.validated_data["reason_details"],
                initiated_by=RefundInitiator.ADMIN,
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


class RefundRetryView(APIView):
    """
    Admin retry of a failed refund.

    URL: /api/v1/refunds/{refund_id}/retry/
    """

    permission_classes = [IsPlatformAdmin]

    @extend_schema(
        summary="Retry refund",
        tags=["Refunds"],
        request=None,
        responses={200: RefundSerializer, 202: RefundSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, refund_id):
        refund = get_object_or_404(Refund, pk=refund_id)
        try:
            result = RefundService.retry(refund)
        except BaseApplicationError as e:
            return error_response(e)

        refund.refresh_from_db()
        if not result:
            # Retry scheduled; the refund retry worker picks it up.
            return Response(RefundSerializer(refund).data, status=status.HTTP_202_ACCEPTED)
        return Response(RefundSerializer(refund).data)


class RefundForceWalletView(APIView):
    """
    Admin override: credit the refund to the client's wallet now.

    URL: /api/v1/refunds/{refund_id}/force-wallet/
    """

    permission_classes = [IsPlatformAdmin]

    @extend_schema(
        summary="Credit refund to wallet",
        tags=["Refunds"],
        request=None,
        responses={200: RefundSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, refund_id):
        refund = get_object_or_404(Refund, pk=refund_id)
        try:
            result = RefundService.force_wallet_credit(refund)
        except BaseApplicationError as e:
            return error_response(e)

        if not result:
            return Response(
                {"error": result.error, "error_code": result.error_code},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(RefundSerializer(result.data).data)


# =============================================================================
# Disputes
# =============================================================================


class OpenDisputeView(APIView):
    """
    Either party disputes a funded order. Freezes the escrow.

    URL: /api/v1/orders/{order_id}/dispute/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Open dispute",
        tags=["Disputes"],
        request=OpenDisputeSerializer,
        responses={200: OrderSettlementSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, order_id):
        order = get_object_or_404(Order, pk=order_id)
        serializer = OpenDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = EscrowLedger.open_dispute(order, request.user, serializer.validated_data["reason"])
        except BaseApplicationError as e:
            return error_response(e)

        return Response(OrderSettlementSerializer(order).data)


class ResolveDisputeView(APIView):
    """
    Admin settles a disputed order.

    URL: /api/v1/disputes/{order_id}/resolve/
    """

    permission_classes = [IsPlatformAdmin]

    @extend_schema(
        summary="Resolve dispute",
        description=(
            "released_to_editor pays the editor, refunded_to_client refunds "
            "in full, split refunds splitPercent to the client and credits "
            "the rest to the editor's pending payout."
        ),
        tags=["Disputes"],
        request=ResolveDisputeSerializer,
        responses={200: OrderSettlementSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, order_id):
        """
        Request body:
            {
                "resolution": "split",
                "splitPercent": 40
            }
        """
        order = get_object_or_404(Order, pk=order_id)
        serializer = ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = EscrowLedger.resolve_dispute(
                order,
                serializer.validated_data["resolution"],
                split_percent=serializer.validated_data["split_percent"],
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(OrderSettlementSerializer(order).data)


# =============================================================================
# Read-only history
# =============================================================================

UUID_PATTERN = "[0-9a-f-]{36}"
REFUND_STATS_DAYS = 30
PAYMENT_STATS_MONTHS = 6

NOT_ORDER_PARTY_BODY = {
    "error": "Only the order's client, editor or an admin can view this",
    "error_code": "NOT_ORDER_PARTY",
}


def can_view_order(user, order: Order) -> bool:
    return user.is_platform_admin or user.pk in (order.client_id, order.editor_id)


class DeliveryStatusView(APIView):
    """
    Delivery progress of an order for its parties.

    URL: /api/v1/delivery/{order_id}/status/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Delivery status",
        description="The download token is only returned to the order's client.",
        tags=["Delivery"],
        responses={200: DeliveryStatusSerializer, **ERROR_RESPONSES},
    )
    def get(self, request, order_id):
        order = get_object_or_404(Order, pk=order_id)
        if not can_view_order(request.user, order):
            return Response(NOT_ORDER_PARTY_BODY, status=status.HTTP_403_FORBIDDEN)

        delivery = FinalDelivery.objects.filter(order=order).first()
        token = None
        if delivery is not None and request.user.pk == order.client_id:
            token = delivery.download_token
        return Response(
            DeliveryStatusSerializer(
                {
                    "order_status": order.status,
                    "phase": order.phase,
                    "delivery": delivery,
                    "download_token": token,
                }
            ).data
        )


class RefundViewSet(viewsets.GenericViewSet):
    """
    Read-only refund history.

    Clients see their own refunds and wallet, order parties see an
    order's refunds, admins see every refund and recent totals.
    """

    serializer_class = RefundSerializer
    permission_classes = [IsAuthenticated]
    queryset = Refund.objects.select_related("order")

    def get_permissions(self):
        if self.action in ("all_refunds", "stats"):
            return [IsPlatformAdmin()]
        return super().get_permissions()

    def _list(self, queryset):
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(queryset, many=True).data)

    @extend_schema(
        operation_id="list_my_refunds",
        summary="My refunds",
        parameters=[OpenApiParameter("status", str, description="Filter by refund status")],
        tags=["Refunds"],
    )
    @action(detail=False, methods=["get"], url_path="my")
    def my(self, request):
        queryset = self.get_queryset().filter(client=request.user)
        if request.query_params.get("status"):
            queryset = queryset.filter(status=request.query_params["status"])
        return self._list(queryset)

    @extend_schema(
        operation_id="get_wallet",
        summary="Wallet balance",
        responses={200: WalletSerializer},
        tags=["Refunds"],
    )
    @action(detail=False, methods=["get"], url_path="wallet")
    def wallet(self, request):
        user = request.user
        return Response(
            WalletSerializer({"balance": user.wallet_balance, "last_updated": user.updated_at}).data
        )

    @extend_schema(
        operation_id="list_order_refunds",
        summary="Refunds for an order",
        responses={200: RefundSerializer(many=True), **ERROR_RESPONSES},
        tags=["Refunds"],
    )
    @action(
        detail=False,
        methods=["get"],
        url_path=rf"order/(?P<order_id>{UUID_PATTERN})",
        url_name="for-order",
    )
    def for_order(self, request, order_id=None):
        order = get_object_or_404(Order, pk=order_id)
        if not can_view_order(request.user, order):
            return Response(NOT_ORDER_PARTY_BODY, status=status.HTTP_403_FORBIDDEN)
        refunds = self.get_queryset().filter(order=order)
        return Response(self.get_serializer(refunds, many=True).data)

    @extend_schema(
        operation_id="list_all_refunds",
        summary="All refunds (admin)",
        parameters=[
            OpenApiParameter("status", str, description="Filter by refund status"),
            OpenApiParameter("reason", str, description="Filter by refund reason"),
        ],
        tags=["Refunds"],
    )
    @action(detail=False, methods=["get"], url_path="admin/all", url_name="admin-all")
    def all_refunds(self, request):
        queryset = self.get_queryset().select_related("client")
        for field in ("status", "reason"):
            value = request.query_params.get(field)
            if value:
                queryset = queryset.filter(**{field: value})
        return self._list(queryset)

    @extend_schema(
        operation_id="get_refund_stats",
        summary="Refund totals (admin)",
        responses={200: RefundStatsSerializer},
        tags=["Refunds"],
    )
    @action(detail=False, methods=["get"], url_path="admin/stats", url_name="admin-stats")
    def stats(self, request):
        since = timezone.now() - timedelta(days=REFUND_STATS_DAYS)
        rows = (
            Refund.objects.filter(created_at__gte=since)
            .values("status")
            .annotate(count=Count("id"), amount=Sum("refund_amount"))
            .order_by()
        )
        by_status = {value: {"count": 0, "amount": 0} for value in RefundStatus.values}
        for row in rows:
            by_status[row["status"]] = {"count": row["count"], "amount": row["amount"] or 0}
        total = {
            "count": sum(entry["count"] for entry in by_status.values()),
            "amount": sum(entry["amount"] for entry in by_status.values()),
        }
        return Response(
            RefundStatsSerializer(
                {"days": REFUND_STATS_DAYS, "total": total, "by_status": by_status}
            ).data
        )


@extend_schema_view(
    retrieve=extend_schema(
        operation_id="get_payment",
        summary="Get payment record",
        tags=["Payments"],
    ),
)
class PaymentViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    Settled payment records where the user is payer or payee.

    Admins see every record.
    """

    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        queryset = Payment.objects.select_related("order", "payer", "payee")
        user = self.request.user
        if getattr(user, "is_platform_admin", False):
            return queryset
        return queryset.filter(Q(payer=user) | Q(payee=user))

    @extend_schema(
        operation_id="list_payment_history",
        summary="Payment history",
        parameters=[
            OpenApiParameter("type", str, description="escrow_release or refund"),
        ],
        tags=["Payments"],
    )
    @action(detail=False, methods=["get"], url_path="history")
    def history(self, request):
        queryset = self.get_queryset()
        if request.query_params.get("type"):
            queryset = queryset.filter(payment_type=request.query_params["type"])
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(queryset, many=True).data)

    @extend_schema(
        operation_id="get_payment_stats",
        summary="Payment totals",
        description=(
            "Totals over completed records. total_earnings is what the user "
            "earned as editor; total_refunded is what came back as client."
        ),
        responses={200: PaymentStatsSerializer},
        tags=["Payments"],
    )
    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        user = request.user
        completed = self.get_queryset().filter(status=PaymentRecordStatus.COMPLETED)
        totals = completed.aggregate(
            total_transactions=Count("id"),
            total_amount=Sum("amount"),
            total_fees=Sum("platform_fee"),
        )
        earned = completed.filter(payee=user, payment_type=PaymentType.ESCROW_RELEASE).aggregate(
            total=Sum("editor_earning")
        )
        refunded = completed.filter(payee=user, payment_type=PaymentType.REFUND).aggregate(
            total=Sum("amount")
        )
        since = timezone.now() - timedelta(days=PAYMENT_STATS_MONTHS * 31)
        monthly = (
            completed.filter(created_at__gte=since)
            .annotate(month=TruncMonth("created_at"))
            .values("month")
            .annotate(amount=Sum("amount"), count=Count("id"))
            .order_by("month")
        )
        return Response(
            PaymentStatsSerializer(
                {
                    "total_transactions": totals["total_transactions"],
                    "total_amount": totals["total_amount"] or 0,
                    "total_fees": totals["total_fees"] or 0,
                    "total_earnings": earned["total"] or 0,
                    "total_refunded": refunded["total"] or 0,
                    "monthly": list(monthly),
                }
            ).data
        )

    @extend_schema(
        operation_id="get_payment_receipt",
        summary="Payment receipt",
        responses={200: ReceiptSerializer},
        tags=["Payments"],
    )
    @action(detail=True, methods=["get"], url_path="receipt")
    def receipt(self, request, pk=None):
        return Response(ReceiptSerializer(self.get_object()).data)

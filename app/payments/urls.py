"""
URL configuration for the payments app.

Routes:
    - POST payments/orders/<order_id>/initiate/ - Create the gateway order
    - POST payments/verify/ - Verify payment, hold escrow
    - GET payments/history/, payments/stats/ - Payment records and totals
    - GET payments/<id>/, payments/<id>/receipt/ - One record and its receipt
    - POST webhooks/payment/ - Gateway webhook endpoint
    - POST delivery/<order_id>/confirm/ - Confirm download, release escrow
    - GET delivery/<order_id>/status/ - Delivery progress
    - POST refunds/initiate/<order_id>/ - Admin refund
    - POST refunds/<refund_id>/retry/ - Admin refund retry
    - POST refunds/<refund_id>/force-wallet/ - Admin wallet credit
    - GET refunds/my/, refunds/wallet/, refunds/order/<order_id>/ - Client views
    - GET refunds/admin/all/, refunds/admin/stats/ - Admin views
    - POST orders/<order_id>/dispute/ - Open a dispute
    - POST disputes/<order_id>/resolve/ - Admin dispute resolution

All routes are prefixed with /api/v1/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("", include("payments.urls")),
    ]
"""

from django.urls import path
from rest_framework.routers import SimpleRouter

from payments import views
from payments.webhooks.views import payment_webhook

app_name = "payments"

router = SimpleRouter()
router.register(r"payments", views.PaymentViewSet, basename="payment")
router.register(r"refunds", views.RefundViewSet, basename="refund")

urlpatterns = [
    # Payment
    path(
        "payments/orders/<uuid:order_id>/initiate/",
        views.InitiatePaymentView.as_view(),
        name="initiate_payment",
    ),
    path("payments/verify/", views.VerifyPaymentView.as_view(), name="verify_payment"),
    path("webhooks/payment/", payment_webhook, name="payment_webhook"),
    # Delivery
    path(
        "delivery/<uuid:order_id>/confirm/",
        views.ConfirmDeliveryView.as_view(),
        name="confirm_delivery",
    ),
    path(
        "delivery/<uuid:order_id>/status/",
        views.DeliveryStatusView.as_view(),
        name="delivery_status",
    ),
    # Refunds
    path(
        "refunds/initiate/<uuid:order_id>/",
        views.RefundInitiateView.as_view(),
        name="initiate_refund",
    ),
    path("refunds/<uuid:refund_id>/retry/", views.RefundRetryView.as_view(), name="retry_refund"),
    path(
        "refunds/<uuid:refund_id>/force-wallet/",
        views.RefundForceWalletView.as_view(),
        name="force_wallet_refund",
    ),
    # Disputes
    path("orders/<uuid:order_id>/dispute/", views.OpenDisputeView.as_view(), name="open_dispute"),
    path(
        "disputes/<uuid:order_id>/resolve/",
        views.ResolveDisputeView.as_view(),
        name="resolve_dispute",
    ),
    # Read-only history
    *router.urls,
]

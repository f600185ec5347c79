"""
URL configuration for the Django application.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT pair (POST)
    /api/v1/auth/token/refresh/    - Refresh JWT (POST)
    /api/v1/notifications/         - Notification list, detail, read-all
    /api/v1/payments/              - Payment endpoints
        orders/{id}/initiate/      - Create the gateway order
        verify/                    - Verify payment, hold escrow
        history/, stats/           - Payment records and totals
        {id}/, {id}/receipt/       - One record and its receipt
    /api/v1/webhooks/payment/      - Gateway webhook endpoint (POST)
    /api/v1/delivery/{id}/confirm/ - Confirm download, release escrow
    /api/v1/delivery/{id}/status/  - Delivery progress (GET)
    /api/v1/refunds/               - Refund history and admin operations
        my/, wallet/               - The client's refunds and wallet
        order/{order_id}/          - Refunds for an order
        admin/all/, admin/stats/   - Every refund, 30-day totals
        initiate/{order_id}/       - Refund an order
        {id}/retry/                - Retry a failed refund
        {id}/force-wallet/         - Credit refund to wallet
    /api/v1/orders/{id}/dispute/   - Open a dispute
    /api/v1/disputes/{id}/resolve/ - Resolve a dispute (admin)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    # Authentication (simplejwt)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Notifications
    path("notifications/", include("notifications.urls")),
    # Payments, delivery, refunds and disputes
    path("", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Marketplace Settlement Admin"
admin.site.site_title = "Settlement Admin"
admin.site.index_title = "Orders, payments and refunds"

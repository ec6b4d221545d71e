"""
URL configuration for the shipment settlement service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - JWT endpoints (simplejwt)
        token/                     - Obtain access/refresh pair
        token/refresh/             - Rotate refresh token
    /api/v1/settlement/            - Settlement endpoints
        orders/                    - Book a shipment (gateway order or PAY_LATER)
        orders/confirm/            - Confirm a captured payment
        shipments/{id}/...         - Lifecycle actions (assign, otp, start,
                                     out-for-delivery, deliver, cancel, disputes)
        invoices/{id}/...          - issue, fund, release, pay
        disputes/{id}/resolve/     - Resolve a dispute
        payouts/{id}/retry/        - Retry a failed payout
        earnings/                  - Driver earnings summary
        withdrawals/               - Request a withdrawal
        withdrawals/{id}/cancel/   - Cancel a pending withdrawal
        webhooks/gateway/          - Payment gateway webhook endpoint (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (JWT)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Settlement
    path("settlement/", include("settlement.urls")),
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
admin.site.site_header = "Settlement Admin"
admin.site.site_title = "Settlement Admin Portal"
admin.site.index_title = "Shipments and settlement"

"""
URL configuration for the settlement app.

All routes are prefixed with /api/v1/settlement/ when included in the main
URLconf. See views.py for the endpoint list.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("settlement/", include("settlement.urls")),
    ]
"""

from django.urls import path

from settlement import views
from settlement.webhooks.views import gateway_webhook

app_name = "settlement"

urlpatterns = [
    # Booking
    path("orders/", views.OrderView.as_view(), name="orders"),
    path("orders/confirm/", views.ConfirmPaymentView.as_view(), name="confirm_payment"),
    # Shipment lifecycle
    path(
        "shipments/<uuid:pk>/assign/",
        views.AssignShipmentView.as_view(),
        name="shipment_assign",
    ),
    path("shipments/<uuid:pk>/otp/", views.RequestOtpView.as_view(), name="shipment_otp"),
    path("shipments/<uuid:pk>/start/", views.StartShipmentView.as_view(), name="shipment_start"),
    path(
        "shipments/<uuid:pk>/out-for-delivery/",
        views.OutForDeliveryView.as_view(),
        name="shipment_out_for_delivery",
    ),
    path(
        "shipments/<uuid:pk>/deliver/",
        views.DeliverShipmentView.as_view(),
        name="shipment_deliver",
    ),
    path(
        "shipments/<uuid:pk>/cancel/",
        views.CancelShipmentView.as_view(),
        name="shipment_cancel",
    ),
    path(
        "shipments/<uuid:pk>/disputes/",
        views.OpenDisputeView.as_view(),
        name="shipment_disputes",
    ),
    # Invoices
    path("invoices/<uuid:pk>/issue/", views.IssueInvoiceView.as_view(), name="invoice_issue"),
    path("invoices/<uuid:pk>/fund/", views.FundInvoiceView.as_view(), name="invoice_fund"),
    path(
        "invoices/<uuid:pk>/release/",
        views.ReleaseInvoiceView.as_view(),
        name="invoice_release",
    ),
    path("invoices/<uuid:pk>/pay/", views.PayInvoiceView.as_view(), name="invoice_pay"),
    # Disputes and payouts
    path(
        "disputes/<uuid:pk>/resolve/",
        views.ResolveDisputeView.as_view(),
        name="dispute_resolve",
    ),
    path("payouts/<uuid:pk>/retry/", views.RetryPayoutView.as_view(), name="payout_retry"),
    # Driver earnings
    path("earnings/", views.EarningsView.as_view(), name="earnings"),
    path("withdrawals/", views.WithdrawalView.as_view(), name="withdrawals"),
    path(
        "withdrawals/<uuid:pk>/cancel/",
        views.CancelWithdrawalView.as_view(),
        name="withdrawal_cancel",
    ),
    # Webhook endpoints
    path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
]

"""
DRF views for the settlement API.

Thin controllers: validate input, check who is calling, call one service
operation and render the resulting snapshot. Failures carry the service's
error_code; the HTTP status follows the exception family:

    ValidationError -> 400    NotFoundError -> 404
    PermissionDeniedError -> 403    ConflictError -> 409
    ExternalServiceError -> 502

Related files:
    - services/: SettlementCoordinator, PayoutService, WithdrawalService
    - shipments/services.py: ShipmentStateMachine
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints (prefix /api/v1/settlement/):
    POST orders/                         - Book a shipment (gateway order or PAY_LATER)
    POST orders/confirm/                 - Confirm a captured payment
    POST shipments/{id}/assign/          - Assign driver and vehicle (manager)
    POST shipments/{id}/otp/             - Issue a pickup or delivery code
    POST shipments/{id}/start/           - Pickup with OTP
    POST shipments/{id}/out-for-delivery/ - Mark out for delivery
    POST shipments/{id}/deliver/         - Deliver with OTP
    POST shipments/{id}/cancel/          - Cancel (refunds a funded invoice)
    POST shipments/{id}/disputes/        - Open a dispute
    POST invoices/{id}/issue/            - DRAFT -> ISSUED (manager)
    POST invoices/{id}/fund/             - Record escrow funding (manager)
    POST invoices/{id}/release/          - Release escrow and pay out (manager)
    POST invoices/{id}/pay/              - Gateway order for an issued invoice
    POST disputes/{id}/resolve/          - Resolve a dispute (manager)
    POST payouts/{id}/retry/             - Retry a failed payout (manager)
    GET  earnings/                       - Driver earnings summary
    POST withdrawals/                    - Request a withdrawal
    POST withdrawals/{id}/cancel/        - Cancel a pending withdrawal
"""

from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
)
from core.services import ServiceResult
from settlement.models import Invoice
from settlement.permissions import IsDriver, IsManager
from settlement.serializers import (
    AssignSerializer,
    ConfirmPaymentSerializer,
    DisputeRequestSerializer,
    DisputeSerializer,
    EarningsSummarySerializer,
    FundInvoiceSerializer,
    InvoiceSerializer,
    OtpChallengeSerializer,
    OtpRequestSerializer,
    OtpSerializer,
    PayoutSerializer,
    PendingShipmentSerializer,
    ReasonSerializer,
    ResolveDisputeSerializer,
    RetryPayoutSerializer,
    ShipmentDraftSerializer,
    ShipmentSerializer,
    WithdrawalRequestSerializer,
    WithdrawalSerializer,
)
from settlement.services import PayoutService, SettlementCoordinator, WithdrawalService
from shipments.models import Shipment, Vehicle
from shipments.services import ShipmentStateMachine
from shipments.states import PaymentOption

logger = logging.getLogger(__name__)

User = get_user_model()

# Most specific family first
ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(result: ServiceResult) -> int:
    """HTTP status for a failed ServiceResult."""
    for exc_type, http_status in ERROR_STATUS:
        if isinstance(result.exception, exc_type):
            return http_status
    return status.HTTP_400_BAD_REQUEST


def failure_response(result: ServiceResult) -> Response:
    body = {"error": result.error, "error_code": result.error_code}
    if result.details:
        body["details"] = result.details
    return Response(body, status=status_for(result))


def forbidden(message: str) -> Response:
    return Response(
        {"error": message, "error_code": "PERMISSION_DENIED"},
        status=status.HTTP_403_FORBIDDEN,
    )


def render(result: ServiceResult, serializer_class, success_status=status.HTTP_200_OK) -> Response:
    if not result.success:
        return failure_response(result)
    return Response(serializer_class(result.data).data, status=success_status)


# =============================================================================
# Booking
# =============================================================================


class OrderView(APIView):
    """
    Book a shipment.

    POST /api/v1/settlement/orders/

    PAY_NOW drafts from customers return a gateway order (201) that the
    client pays through checkout; the shipment only exists after
    confirmation. PAY_LATER drafts and manager bookings return the
    materialized shipment (201).
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Book a shipment",
        tags=["Settlement - Booking"],
        request=ShipmentDraftSerializer,
        responses={
            201: OpenApiResponse(description="Gateway order or materialized shipment"),
            400: OpenApiResponse(description="Invalid draft"),
            502: OpenApiResponse(description="Gateway unavailable"),
        },
    )
    def post(self, request):
        serializer = ShipmentDraftSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        draft = dict(serializer.validated_data)
        customer_id = draft.pop("customer_id", None)

        if request.user.is_manager:
            customer = (
                get_object_or_404(User, pk=customer_id) if customer_id else request.user
            )
            result = SettlementCoordinator.book_shipment(
                customer, draft, created_by=request.user
            )
            return render(result, ShipmentSerializer, status.HTTP_201_CREATED)

        if draft["payment_option"] == PaymentOption.PAY_LATER:
            result = SettlementCoordinator.book_shipment(request.user, draft)
            return render(result, ShipmentSerializer, status.HTTP_201_CREATED)

        result = SettlementCoordinator.create_order(request.user, draft)
        return render(result, PendingShipmentSerializer, status.HTTP_201_CREATED)


class ConfirmPaymentView(APIView):
    """
    Confirm a captured gateway payment.

    POST /api/v1/settlement/orders/confirm/

    Request body:
        {"order_id": "order_...", "payment_id": "pay_...", "signature": "<hex>"}

    Replays return the shipment created by the first confirmation.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Confirm payment",
        tags=["Settlement - Booking"],
        request=ConfirmPaymentSerializer,
        responses={
            200: OpenApiResponse(description="Shipment and invoice snapshot"),
            400: OpenApiResponse(description="Signature invalid"),
            404: OpenApiResponse(description="Unknown order"),
        },
    )
    def post(self, request):
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = SettlementCoordinator.confirm_payment(
            data["order_id"], data["payment_id"], data["signature"]
        )
        if not result.success:
            return failure_response(result)

        confirmation = result.data
        return Response(
            {
                "shipment": ShipmentSerializer(confirmation.shipment).data,
                "invoice": InvoiceSerializer(confirmation.invoice).data
                if confirmation.invoice
                else None,
                "replayed": confirmation.replayed,
            }
        )


# =============================================================================
# Shipment Lifecycle
# =============================================================================


class ShipmentActionView(APIView):
    """Base for POST actions on one shipment."""

    permission_classes = [IsAuthenticated]

    def get_shipment(self, request, pk) -> Shipment:
        return get_object_or_404(Shipment, pk=pk)

    @staticmethod
    def is_assigned_driver(user, shipment: Shipment) -> bool:
        return shipment.assigned_driver_id is not None and shipment.assigned_driver_id == user.pk

    @staticmethod
    def is_owner(user, shipment: Shipment) -> bool:
        return shipment.customer_id == user.pk


class AssignShipmentView(ShipmentActionView):
    """POST /api/v1/settlement/shipments/{id}/assign/"""

    permission_classes = [IsAuthenticated, IsManager]

    @extend_schema(
        summary="Assign driver and vehicle",
        tags=["Settlement - Shipments"],
        request=AssignSerializer,
        responses={200: ShipmentSerializer},
    )
    def post(self, request, pk):
        shipment = self.get_shipment(request, pk)
        serializer = AssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        driver = get_object_or_404(User, pk=serializer.validated_data["driver_id"])
        vehicle = get_object_or_404(Vehicle, pk=serializer.validated_data["vehicle_id"])
        result = ShipmentStateMachine.assign(shipment, driver, vehicle, actor=request.user)
        return render(result, ShipmentSerializer)


class RequestOtpView(ShipmentActionView):
    """
    POST /api/v1/settlement/shipments/{id}/otp/

    Returns the plain code once; only its hash is stored.
    """

    @extend_schema(
        summary="Issue pickup or delivery OTP",
        tags=["Settlement - Shipments"],
        request=OtpRequestSerializer,
        responses={201: OtpChallengeSerializer},
    )
    def post(self, request, pk):
        shipment = self.get_shipment(request, pk)
        user = request.user
        if not (
            user.is_manager
            or self.is_owner(user, shipment)
            or self.is_assigned_driver(user, shipment)
        ):
            return forbidden("Not a participant of this shipment")

        serializer = OtpRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = ShipmentStateMachine.request_otp(
            shipment, serializer.validated_data["purpose"], actor=user
        )
        return render(result, OtpChallengeSerializer, status.HTTP_201_CREATED)


class DriverShipmentActionView(ShipmentActionView):
    """Actions performed by the assigned driver (or a manager)."""

    def check_driver(self, request, shipment) -> Response | None:
        if request.user.is_manager or self.is_assigned_driver(request.user, shipment):
            return None
        return forbidden("Only the assigned driver can perform this action")


class StartShipmentView(DriverShipmentActionView):
    """POST /api/v1/settlement/shipments/{id}/start/"""

    @extend_schema(
        summary="Pick up with OTP",
        tags=["Settlement - Shipments"],
        request=OtpSerializer,
        responses={200: ShipmentSerializer},
    )
    def post(self, request, pk):
        shipment = self.get_shipment(request, pk)
        denied = self.check_driver(request, shipment)
        if denied:
            return denied

        serializer = OtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = ShipmentStateMachine.start(
            shipment, serializer.validated_data["otp"], actor=request.user
        )
        return render(result, ShipmentSerializer)


class OutForDeliveryView(DriverShipmentActionView):
    """POST /api/v1/settlement/shipments/{id}/out-for-delivery/"""

    @extend_schema(
        summary="Mark out for delivery",
        tags=["Settlement - Shipments"],
        request=None,
        responses={200: ShipmentSerializer},
    )
    def post(self, request, pk):
        shipment = self.get_shipment(request, pk)
        denied = self.check_driver(request, shipment)
        if denied:
            return denied

        result = ShipmentStateMachine.mark_out_for_delivery(shipment, actor=request.user)
        return render(result, ShipmentSerializer)


class DeliverShipmentView(DriverShipmentActionView):
    """
    POST /api/v1/settlement/shipments/{id}/deliver/

    Driver earnings are AVAILABLE in the returned snapshot.
    """

    @extend_schema(
        summary="Deliver with OTP",
        tags=["Settlement - Shipments"],
        request=OtpSerializer,
        responses={200: ShipmentSerializer},
    )
    def post(self, request, pk):
        shipment = self.get_shipment(request, pk)
        denied = self.check_driver(request, shipment)
        if denied:
            return denied

        serializer = OtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = ShipmentStateMachine.deliver(
            shipment, serializer.validated_data["otp"], actor=request.user
        )
        return render(result, ShipmentSerializer)


class CancelShipmentView(ShipmentActionView):
    """POST /api/v1/settlement/shipments/{id}/cancel/"""

    @extend_schema(
        summary="Cancel shipment",
        description="A FUNDED invoice is refunded before the shipment is cancelled.",
        tags=["Settlement - Shipments"],
        request=ReasonSerializer,
        responses={200: ShipmentSerializer},
    )
    def post(self, request, pk):
        shipment = self.get_shipment(request, pk)
        if not (request.user.is_manager or self.is_owner(request.user, shipment)):
            return forbidden("Only the customer or a manager can cancel a shipment")

        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = ShipmentStateMachine.cancel(
            shipment, reason=serializer.validated_data["reason"], actor=request.user
        )
        return render(result, ShipmentSerializer)


class OpenDisputeView(APIView):
    """POST /api/v1/settlement/shipments/{id}/disputes/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Open a dispute",
        tags=["Settlement - Disputes"],
        request=DisputeRequestSerializer,
        responses={201: DisputeSerializer},
    )
    def post(self, request, pk):
        serializer = DisputeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = SettlementCoordinator.open_dispute(
            pk, request.user, serializer.validated_data["reason"]
        )
        return render(result, DisputeSerializer, status.HTTP_201_CREATED)


# =============================================================================
# Invoices, Disputes, Payouts (manager operated)
# =============================================================================


class IssueInvoiceView(APIView):
    """POST /api/v1/settlement/invoices/{id}/issue/"""

    permission_classes = [IsAuthenticated, IsManager]

    @extend_schema(summary="Issue invoice", tags=["Settlement - Invoices"], request=None)
    def post(self, request, pk):
        return render(SettlementCoordinator.issue_invoice(pk), InvoiceSerializer)


class FundInvoiceView(APIView):
    """POST /api/v1/settlement/invoices/{id}/fund/"""

    permission_classes = [IsAuthenticated, IsManager]

    @extend_schema(
        summary="Fund invoice escrow",
        tags=["Settlement - Invoices"],
        request=FundInvoiceSerializer,
        responses={200: InvoiceSerializer},
    )
    def post(self, request, pk):
        serializer = FundInvoiceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = SettlementCoordinator.fund_invoice(
            pk, serializer.validated_data["provider_ref"], actor=request.user
        )
        return render(result, InvoiceSerializer)


class ReleaseInvoiceView(APIView):
    """POST /api/v1/settlement/invoices/{id}/release/"""

    permission_classes = [IsAuthenticated, IsManager]

    @extend_schema(
        summary="Release escrow",
        description="FUNDED -> PAID. Payouts are reserved and sent to the payout rail.",
        tags=["Settlement - Invoices"],
        request=None,
        responses={200: InvoiceSerializer},
    )
    def post(self, request, pk):
        return render(
            SettlementCoordinator.release_invoice(pk, actor=request.user), InvoiceSerializer
        )


class PayInvoiceView(APIView):
    """
    POST /api/v1/settlement/invoices/{id}/pay/

    Mints (or returns) the gateway order for an ISSUED invoice. The
    customer then confirms it through orders/confirm/.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Create gateway order for an invoice",
        tags=["Settlement - Invoices"],
        request=None,
        responses={200: InvoiceSerializer},
    )
    def post(self, request, pk):
        invoice = get_object_or_404(Invoice, pk=pk)
        if not (request.user.is_manager or invoice.customer_id == request.user.pk):
            return forbidden("Invoice belongs to another customer")
        return render(SettlementCoordinator.create_invoice_order(invoice.pk), InvoiceSerializer)


class ResolveDisputeView(APIView):
    """POST /api/v1/settlement/disputes/{id}/resolve/"""

    permission_classes = [IsAuthenticated, IsManager]

    @extend_schema(
        summary="Resolve a dispute",
        description="RELEASE pays out the invoice, REFUND returns the escrow. Terminal.",
        tags=["Settlement - Disputes"],
        request=ResolveDisputeSerializer,
        responses={200: DisputeSerializer},
    )
    def post(self, request, pk):
        serializer = ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = SettlementCoordinator.resolve_dispute(
            pk, data["outcome"], note=data["note"], resolved_by=request.user
        )
        return render(result, DisputeSerializer)


class RetryPayoutView(APIView):
    """POST /api/v1/settlement/payouts/{id}/retry/"""

    permission_classes = [IsAuthenticated, IsManager]

    @extend_schema(
        summary="Retry a failed payout",
        tags=["Settlement - Payouts"],
        request=RetryPayoutSerializer,
        responses={200: PayoutSerializer},
    )
    def post(self, request, pk):
        serializer = RetryPayoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = PayoutService.retry_payout(
            pk,
            expected_version=serializer.validated_data.get("expected_version"),
            actor=request.user,
        )
        return render(result, PayoutSerializer)


# =============================================================================
# Driver Earnings
# =============================================================================


class EarningsView(APIView):
    """GET /api/v1/settlement/earnings/"""

    permission_classes = [IsAuthenticated, IsDriver]

    @extend_schema(
        summary="Driver earnings summary",
        tags=["Settlement - Earnings"],
        responses={200: EarningsSummarySerializer},
    )
    def get(self, request):
        return render(SettlementCoordinator.earnings_summary(request.user), EarningsSummarySerializer)


class WithdrawalView(APIView):
    """
    POST /api/v1/settlement/withdrawals/

    Request body:
        {"amount_paise": 350000, "upi_id": "driver@upi"}

    Returns the PENDING withdrawal (202); the transfer runs in the background.
    """

    permission_classes = [IsAuthenticated, IsDriver]

    @extend_schema(
        summary="Request a withdrawal",
        tags=["Settlement - Earnings"],
        request=WithdrawalRequestSerializer,
        responses={202: WithdrawalSerializer},
    )
    def post(self, request):
        serializer = WithdrawalRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = WithdrawalService.request_withdrawal(
            request.user, data["amount_paise"], upi_id=data.get("upi_id") or None
        )
        return render(result, WithdrawalSerializer, status.HTTP_202_ACCEPTED)


class CancelWithdrawalView(APIView):
    """POST /api/v1/settlement/withdrawals/{id}/cancel/"""

    permission_classes = [IsAuthenticated, IsDriver]

    @extend_schema(
        summary="Cancel a pending withdrawal",
        tags=["Settlement - Earnings"],
        request=None,
        responses={200: WithdrawalSerializer},
    )
    def post(self, request, pk):
        return render(WithdrawalService.cancel_withdrawal(pk, request.user), WithdrawalSerializer)

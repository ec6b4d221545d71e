"""
Serializers for the settlement API.

Request serializers validate caller input only; every state rule is
enforced by the services. Response serializers render the current
snapshot of a ledger entity.

Serializer Hierarchy:
    ShipmentDraftSerializer: Booking input (PAY_NOW and PAY_LATER)
    ConfirmPaymentSerializer: Gateway checkout callback
    AssignSerializer / OtpRequestSerializer / OtpSerializer / ReasonSerializer:
        Shipment lifecycle actions
    FundInvoiceSerializer, ResolveDisputeSerializer, RetryPayoutSerializer,
    WithdrawalRequestSerializer: Settlement actions

    ShipmentSerializer, InvoiceSerializer, PaymentSerializer, PayoutSerializer,
    DisputeSerializer, WithdrawalSerializer, PendingShipmentSerializer,
    OtpChallengeSerializer, EarningsSummarySerializer: Snapshots
"""

from __future__ import annotations

from rest_framework import serializers

from settlement.models import (
    Dispute,
    DriverWithdrawal,
    Invoice,
    Payment,
    Payout,
    PendingShipment,
)
from settlement.state_machines import DisputeOutcome
from shipments.models import Shipment
from shipments.states import (
    DeliveryType,
    OtpPurpose,
    PaymentOption,
    ShipmentType,
    VehicleType,
)


# =============================================================================
# Request Serializers
# =============================================================================


class ShipmentDraftSerializer(serializers.Serializer):
    """
    Booking input.

    PAY_NOW drafts return a gateway order; PAY_LATER drafts (and any draft
    submitted by a manager) materialize the shipment immediately.
    """

    pickup_address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    drop_address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    distance_km = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0)
    weight_kg = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, default=0
    )
    vehicle_type = serializers.ChoiceField(
        choices=VehicleType.choices, required=False, default=VehicleType.TRUCK_SM
    )
    shipment_type = serializers.ChoiceField(
        choices=ShipmentType.choices, required=False, default=ShipmentType.KIRANA
    )
    delivery_type = serializers.ChoiceField(
        choices=DeliveryType.choices, required=False, default=DeliveryType.STANDARD
    )
    payment_option = serializers.ChoiceField(
        choices=PaymentOption.choices, required=False, default=PaymentOption.PAY_NOW
    )
    traffic_impact = serializers.DecimalField(
        max_digits=4, decimal_places=2, min_value=0, required=False, default=1
    )
    weather_impact = serializers.DecimalField(
        max_digits=4, decimal_places=2, min_value=0, required=False, default=1
    )
    is_extra_shift = serializers.BooleanField(required=False, default=False)
    customer_id = serializers.IntegerField(
        required=False, help_text="Managers booking on behalf of a customer"
    )


class ConfirmPaymentSerializer(serializers.Serializer):
    order_id = serializers.CharField(max_length=100)
    payment_id = serializers.CharField(max_length=100)
    signature = serializers.CharField(max_length=256)


class AssignSerializer(serializers.Serializer):
    driver_id = serializers.IntegerField()
    vehicle_id = serializers.UUIDField()


class OtpRequestSerializer(serializers.Serializer):
    purpose = serializers.ChoiceField(choices=OtpPurpose.choices)


class OtpSerializer(serializers.Serializer):
    otp = serializers.RegexField(r"^\d{6}$", help_text="Six-digit code")


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class DisputeRequestSerializer(serializers.Serializer):
    reason = serializers.CharField()


class FundInvoiceSerializer(serializers.Serializer):
    provider_ref = serializers.CharField(max_length=100)


class ResolveDisputeSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=DisputeOutcome.choices)
    note = serializers.CharField(required=False, allow_blank=True, default="")


class RetryPayoutSerializer(serializers.Serializer):
    expected_version = serializers.IntegerField(required=False, min_value=1)


class WithdrawalRequestSerializer(serializers.Serializer):
    amount_paise = serializers.IntegerField(min_value=1)
    upi_id = serializers.CharField(max_length=100, required=False, allow_blank=True)


# =============================================================================
# Response Serializers
# =============================================================================


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "kind",
            "status",
            "amount_paise",
            "currency",
            "provider_ref",
            "failure_reason",
            "succeeded_at",
            "failed_at",
            "created_at",
        ]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    shipment_id = serializers.UUIDField(read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "shipment_id",
            "amount_paise",
            "currency",
            "status",
            "gateway_order_id",
            "issued_at",
            "due_at",
            "funded_at",
            "paid_at",
            "disputed_at",
            "refunded_at",
            "payments",
            "version",
        ]
        read_only_fields = fields


class ShipmentSerializer(serializers.ModelSerializer):
    """
    Shipment snapshot.

    OTP hashes are never exposed; the plain code is only returned once by
    the OTP request endpoint.
    """

    assigned_driver_id = serializers.IntegerField(read_only=True, allow_null=True)
    assigned_vehicle_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Shipment
        fields = [
            "id",
            "reference_id",
            "status",
            "is_delayed",
            "delay_reason",
            "pickup_address",
            "drop_address",
            "distance_km",
            "weight_kg",
            "vehicle_type",
            "delivery_type",
            "shipment_type",
            "payment_option",
            "payment_status",
            "price_paise",
            "pricing_breakdown",
            "assigned_driver_id",
            "assigned_vehicle_id",
            "driver_earnings_paise",
            "driver_earnings_status",
            "driver_earnings_available_at",
            "driver_earnings_withdrawn_at",
            "assigned_at",
            "picked_up_at",
            "in_transit_at",
            "out_for_delivery_at",
            "delivered_at",
            "closed_at",
            "cancelled_at",
            "cancellation_reason",
            "version",
        ]
        read_only_fields = fields


class PendingShipmentSerializer(serializers.ModelSerializer):
    """Gateway order returned to the client to open checkout."""

    price_breakdown = serializers.SerializerMethodField()

    class Meta:
        model = PendingShipment
        fields = ["order_id", "amount_paise", "status", "expires_at", "price_breakdown"]
        read_only_fields = fields

    def get_price_breakdown(self, obj: PendingShipment) -> dict:
        return obj.payload.get("pricing_breakdown", {})


class OtpChallengeSerializer(serializers.Serializer):
    purpose = serializers.CharField()
    code = serializers.CharField()
    expires_at = serializers.DateTimeField()


class PayoutSerializer(serializers.ModelSerializer):
    invoice_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Payout
        fields = [
            "id",
            "invoice_id",
            "recipient_type",
            "destination",
            "amount_paise",
            "currency",
            "status",
            "rail_payout_id",
            "attempts",
            "paid_at",
            "failed_at",
            "failure_reason",
            "version",
        ]
        read_only_fields = fields


class DisputeSerializer(serializers.ModelSerializer):
    shipment_id = serializers.UUIDField(read_only=True)
    invoice_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Dispute
        fields = [
            "id",
            "shipment_id",
            "invoice_id",
            "reason",
            "status",
            "outcome",
            "resolution_note",
            "resolved_at",
            "created_at",
        ]
        read_only_fields = fields


class WithdrawalSerializer(serializers.ModelSerializer):
    class Meta:
        model = DriverWithdrawal
        fields = [
            "id",
            "requested_amount_paise",
            "amount_paise",
            "currency",
            "upi_id",
            "status",
            "breakdown",
            "rail_payout_id",
            "failure_reason",
            "processed_at",
            "completed_at",
            "failed_at",
            "cancelled_at",
            "created_at",
        ]
        read_only_fields = fields


class EarningsShipmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Shipment
        fields = [
            "id",
            "reference_id",
            "status",
            "driver_earnings_paise",
            "driver_earnings_status",
            "driver_earnings_available_at",
            "driver_earnings_withdrawn_at",
            "delivered_at",
        ]
        read_only_fields = fields


class EarningsSummarySerializer(serializers.Serializer):
    lifetime_paise = serializers.IntegerField()
    available_paise = serializers.IntegerField()
    processing_paise = serializers.IntegerField()
    withdrawn_paise = serializers.IntegerField()
    paid_out_paise = serializers.IntegerField()
    pending_deliveries = serializers.IntegerField()
    shipments = EarningsShipmentSerializer(many=True)
    withdrawals = WithdrawalSerializer(many=True)

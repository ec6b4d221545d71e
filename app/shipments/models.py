"""
Shipment and fleet models.

Models:
    Vehicle: Fleet vehicle reserved by assignment
    Shipment: Physical lifecycle, OTP checkpoints and driver earnings
    ShipmentEvent: Append-only audit trail of shipment changes

State changes go through shipments.services.ShipmentStateMachine.
Money-bearing fields (payment status, driver earnings) are written by the
settlement app only.

Usage:
    from shipments.models import Shipment
    from shipments.states import ShipmentStatus

    shipment.assign()   # CREATED -> ASSIGNED
    shipment.save()
"""

from __future__ import annotations

import secrets
import string

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel, VersionedModel
from shipments.states import (
    CANCELLABLE_STATUSES,
    CreatedByRole,
    DeliveryType,
    EarningsStatus,
    PaymentOption,
    ShipmentEventType,
    ShipmentPaymentStatus,
    ShipmentStatus,
    ShipmentType,
    VehicleStatus,
    VehicleType,
)

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference_id() -> str:
    """Human-readable shipment reference, e.g. ``SHP-7Q2K9D``."""
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(6))
    return f"{settings.SHIPMENT_REFERENCE_PREFIX}-{suffix}"


class Vehicle(UUIDPrimaryKeyMixin, BaseModel):
    """
    Fleet vehicle.

    Assignment reserves a vehicle (AVAILABLE -> IN_USE) with a conditional
    update; delivery and cancellation release it again.
    """

    registration_number = models.CharField(max_length=20, unique=True)
    vehicle_type = models.CharField(
        max_length=20,
        choices=VehicleType.choices,
        default=VehicleType.TRUCK_SM,
    )
    capacity_kg = models.PositiveIntegerField(default=1000)
    status = models.CharField(
        max_length=20,
        choices=VehicleStatus.choices,
        default=VehicleStatus.AVAILABLE,
        db_index=True,
    )

    class Meta:
        ordering = ["registration_number"]

    def __str__(self) -> str:
        return f"{self.registration_number} ({self.vehicle_type}, {self.status})"


class Shipment(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, VersionedModel):
    """
    A shipment moving through its physical lifecycle.

    Every status save is conditional on the status that was read
    (ConcurrentTransitionMixin), so two workers racing on the same
    transition cannot both win.

    Fields:
        reference_id: Unique human-readable id (SHP-XXXXXX)
        customer: Paying customer
        status: Physical lifecycle state (FSM, protected)
        is_delayed / delay_reason: DELAYED overlay while IN_TRANSIT
        payment_option / payment_status: How and whether the customer paid
        gateway_order_id: Payment gateway order this shipment was booked with
        price_paise: Computed price, fixed at booking
        pricing_breakdown: Stored pricing inputs and components
        payout_breakdown: Split decided at booking, never recomputed
        pickup_otp_hash / delivery_otp_hash / otp_generated_at: OTP checkpoint
        driver_earnings_*: Driver earnings sub-record
        cancellation_requested_at: Set while a cancellation refund is in flight;
            delivery is refused until it clears
    """

    # ==========================================================================
    # Identity & Parties
    # ==========================================================================

    reference_id = models.CharField(
        max_length=20,
        unique=True,
        default=generate_reference_id,
        editable=False,
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="shipments",
    )
    created_by_role = models.CharField(
        max_length=20,
        choices=CreatedByRole.choices,
        default=CreatedByRole.CUSTOMER,
    )
    assigned_driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="assigned_shipments",
        null=True,
        blank=True,
    )
    assigned_vehicle = models.ForeignKey(
        Vehicle,
        on_delete=models.PROTECT,
        related_name="shipments",
        null=True,
        blank=True,
    )

    # ==========================================================================
    # Physical State
    # ==========================================================================

    status = FSMField(
        default=ShipmentStatus.CREATED,
        choices=ShipmentStatus.choices,
        db_index=True,
        protected=True,
    )
    is_delayed = models.BooleanField(default=False)
    delay_reason = models.CharField(max_length=255, blank=True)

    # ==========================================================================
    # Booking Details (pricing inputs)
    # ==========================================================================

    pickup_address = models.CharField(max_length=255, blank=True)
    drop_address = models.CharField(max_length=255, blank=True)
    distance_km = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    weight_kg = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    vehicle_type = models.CharField(
        max_length=20,
        choices=VehicleType.choices,
        default=VehicleType.TRUCK_SM,
    )
    delivery_type = models.CharField(
        max_length=20,
        choices=DeliveryType.choices,
        default=DeliveryType.STANDARD,
    )
    shipment_type = models.CharField(
        max_length=20,
        choices=ShipmentType.choices,
        default=ShipmentType.KIRANA,
    )

    # ==========================================================================
    # Payment (written by settlement)
    # ==========================================================================

    payment_option = models.CharField(
        max_length=20,
        choices=PaymentOption.choices,
        default=PaymentOption.PAY_NOW,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=ShipmentPaymentStatus.choices,
        default=ShipmentPaymentStatus.PENDING,
    )
    gateway_order_id = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway order id of the booking payment (PAY_NOW)",
    )
    price_paise = models.PositiveBigIntegerField(default=0)
    pricing_breakdown = models.JSONField(default=dict, blank=True)
    payout_breakdown = models.JSONField(default=dict, blank=True)

    # ==========================================================================
    # OTP Checkpoints
    # ==========================================================================

    pickup_otp_hash = models.CharField(max_length=128, blank=True)
    delivery_otp_hash = models.CharField(max_length=128, blank=True)
    otp_generated_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Driver Earnings (written by settlement)
    # ==========================================================================

    driver_earnings_paise = models.PositiveBigIntegerField(default=0)
    driver_earnings_status = models.CharField(
        max_length=20,
        choices=EarningsStatus.choices,
        default=EarningsStatus.PENDING,
        db_index=True,
    )
    driver_earnings_available_at = models.DateTimeField(null=True, blank=True)
    driver_earnings_withdrawn_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Lifecycle Timestamps
    # ==========================================================================

    assigned_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    in_transit_at = models.DateTimeField(null=True, blank=True)
    out_for_delivery_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    cancellation_requested_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["assigned_driver", "driver_earnings_status"],
                name="shipment_driver_earnings_idx",
            ),
            models.Index(fields=["customer", "status"], name="shipment_customer_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Shipment({self.reference_id}, {self.status})"

    @property
    def price_rupees(self) -> str:
        return f"{self.price_paise / 100:.2f}"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=ShipmentStatus.CREATED, target=ShipmentStatus.ASSIGNED)
    def assign(self, driver, vehicle):
        """Assign driver and vehicle. Vehicle reservation is done by the caller."""
        self.assigned_driver = driver
        self.assigned_vehicle = vehicle
        self.assigned_at = timezone.now()

    @transition(field=status, source=ShipmentStatus.ASSIGNED, target=ShipmentStatus.PICKED_UP)
    def pick_up(self):
        self.picked_up_at = timezone.now()

    @transition(field=status, source=ShipmentStatus.PICKED_UP, target=ShipmentStatus.IN_TRANSIT)
    def depart(self):
        self.in_transit_at = timezone.now()

    @transition(
        field=status,
        source=ShipmentStatus.IN_TRANSIT,
        target=ShipmentStatus.OUT_FOR_DELIVERY,
    )
    def send_out_for_delivery(self):
        self.out_for_delivery_at = timezone.now()
        self.is_delayed = False
        self.delay_reason = ""

    @transition(
        field=status,
        source=[ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY],
        target=ShipmentStatus.DELIVERED,
    )
    def deliver(self):
        self.delivered_at = timezone.now()
        self.is_delayed = False
        self.delay_reason = ""

    @transition(field=status, source=ShipmentStatus.DELIVERED, target=ShipmentStatus.CLOSED)
    def close(self):
        self.closed_at = timezone.now()

    @transition(field=status, source=CANCELLABLE_STATUSES, target=ShipmentStatus.CANCELLED)
    def cancel(self, reason: str = ""):
        self.cancelled_at = timezone.now()
        self.cancellation_reason = reason[:255]
        self.is_delayed = False


class ShipmentEvent(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Audit trail entry for a shipment.

    Written in the same transaction as the change it records.
    """

    shipment = models.ForeignKey(
        Shipment,
        on_delete=models.CASCADE,
        related_name="events",
    )
    event_type = models.CharField(max_length=30, choices=ShipmentEventType.choices)
    from_status = models.CharField(max_length=20, blank=True)
    to_status = models.CharField(max_length=20, blank=True)
    description = models.CharField(max_length=255, blank=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="shipment_events",
        null=True,
        blank=True,
    )

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["shipment", "created_at"], name="shipment_event_timeline_idx"),
        ]

    def __str__(self) -> str:
        return f"ShipmentEvent({self.shipment_id}, {self.event_type})"

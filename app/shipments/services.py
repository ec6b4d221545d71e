"""
Shipment state machine service.

Drives a shipment through its physical lifecycle:

    CREATED → ASSIGNED → PICKED_UP → IN_TRANSIT → OUT_FOR_DELIVERY → DELIVERED → CLOSED
    any pre-DELIVERED status → CANCELLED

Pickup and delivery are gated by one-time codes (shipments.otp). Delivery
calls the settlement coordinator inside the same transaction, so a
DELIVERED shipment always has AVAILABLE driver earnings.

Every operation:
    1. Locks the shipment row (select_for_update)
    2. Validates the current status (typed error, nothing written on mismatch)
    3. Applies the django-fsm transition and saves only the touched fields
    4. Writes a ShipmentEvent and queues shipment_status_changed on commit

Usage:
    from shipments.services import ShipmentStateMachine

    result = ShipmentStateMachine.assign(shipment.id, driver, vehicle, actor=manager)
    challenge = ShipmentStateMachine.request_otp(shipment.id, OtpPurpose.PICKUP).data
    result = ShipmentStateMachine.start(shipment.id, otp="123456", actor=driver)
    if not result.success:
        print(result.error_code)   # e.g. OTP_MISMATCH
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from django_fsm import ConcurrentTransition, TransitionNotAllowed

from core.exceptions import BaseApplicationError, ConflictError
from core.services import BaseService, ServiceResult
from shipments.exceptions import (
    CancellationPendingError,
    DriverNotApprovedError,
    InvalidShipmentTransition,
    ShipmentNotFoundError,
    VehicleUnavailableError,
)
from shipments.models import Shipment, ShipmentEvent, Vehicle
from shipments.otp import OtpChallenge, OtpService
from shipments.signals import emit_status_changed
from shipments.states import (
    CANCELLABLE_STATUSES,
    OtpPurpose,
    ShipmentEventType,
    ShipmentStatus,
    VehicleStatus,
)

if TYPE_CHECKING:
    from collections.abc import Callable

# Statuses in which a code for each checkpoint may be requested
OTP_ELIGIBLE_STATUSES = {
    OtpPurpose.PICKUP: [ShipmentStatus.ASSIGNED, ShipmentStatus.PICKED_UP],
    OtpPurpose.DELIVERY: [ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY],
}

# Invoice statuses that block cancellation outright
SETTLED_INVOICE_STATUSES = ("PAID", "DISPUTED")


class ShipmentStateMachine(BaseService):
    """
    Physical lifecycle operations.

    Public methods accept a Shipment or its id and return
    ServiceResult[Shipment] (request_otp returns the OtpChallenge).
    The ``apply_*`` methods are for callers that already hold the row lock
    inside their own transaction (the settlement coordinator).
    """

    # ==========================================================================
    # Public operations
    # ==========================================================================

    @classmethod
    def assign(cls, shipment, driver, vehicle, actor=None) -> ServiceResult[Shipment]:
        """
        CREATED → ASSIGNED. Reserves the vehicle.

        Fails with DRIVER_NOT_APPROVED or VEHICLE_UNAVAILABLE without any
        state change.
        """

        def _assign():
            locked = cls._lock(shipment)
            cls._require_status(locked, [ShipmentStatus.CREATED], ShipmentStatus.ASSIGNED)

            if not driver.is_driver:
                raise DriverNotApprovedError(
                    "Only users with the DRIVER role can be assigned",
                    details={"driver_id": str(driver.pk), "role": driver.role},
                )
            if not driver.is_assignable_driver:
                raise DriverNotApprovedError(
                    "Driver is not approved for assignments",
                    details={
                        "driver_id": str(driver.pk),
                        "driver_approval_status": driver.driver_approval_status,
                    },
                )

            reserved = Vehicle.objects.filter(
                pk=vehicle.pk, status=VehicleStatus.AVAILABLE
            ).update(status=VehicleStatus.IN_USE)
            if not reserved:
                raise VehicleUnavailableError(
                    "Vehicle is not available",
                    details={"vehicle_id": str(vehicle.pk)},
                )

            previous = locked.status
            locked.assign(driver, vehicle)
            locked.save(
                update_fields=[
                    "status",
                    "assigned_driver",
                    "assigned_vehicle",
                    "assigned_at",
                    "updated_at",
                ]
            )
            cls._record(
                locked,
                ShipmentEventType.ASSIGNED,
                previous,
                actor,
                f"Assigned to {driver.email}",
                driver_id=str(driver.pk),
                vehicle_id=str(vehicle.pk),
            )
            emit_status_changed(locked, previous)
            return locked

        return cls._run("assign shipment", _assign)

    @classmethod
    def request_otp(cls, shipment, purpose: str, actor=None) -> ServiceResult[OtpChallenge]:
        """
        Issue a pickup or delivery code.

        Fails with OTP_ALREADY_ACTIVE while an unexpired code is outstanding.
        """

        def _request():
            locked = cls._lock(shipment)
            if purpose not in OTP_ELIGIBLE_STATUSES:
                raise InvalidShipmentTransition(
                    f"Unknown OTP purpose {purpose}",
                    details={"purpose": purpose},
                )
            cls._require_status(locked, OTP_ELIGIBLE_STATUSES[purpose], None)

            challenge, fields = OtpService.issue(locked, purpose)
            locked.save(update_fields=[*fields, "updated_at"])
            cls._record(
                locked,
                ShipmentEventType.OTP_REQUESTED,
                locked.status,
                actor,
                f"{purpose} OTP requested",
                purpose=purpose,
                expires_at=challenge.expires_at.isoformat(),
            )
            return challenge

        return cls._run("request OTP", _request)

    @classmethod
    def start(cls, shipment, otp: str, actor=None) -> ServiceResult[Shipment]:
        """
        Pickup checkpoint: ASSIGNED/PICKED_UP → PICKED_UP → IN_TRANSIT.

        A wrong code fails with OTP_MISMATCH and leaves the shipment as it
        was, so the call can be retried.
        """

        def _start():
            locked = cls._lock(shipment)
            cls._require_status(
                locked,
                [ShipmentStatus.ASSIGNED, ShipmentStatus.PICKED_UP],
                ShipmentStatus.IN_TRANSIT,
            )
            OtpService.verify(locked, OtpPurpose.PICKUP, otp)

            previous = locked.status
            fields = ["status", "in_transit_at", "updated_at"]
            if locked.status == ShipmentStatus.ASSIGNED:
                locked.pick_up()
                fields.append("picked_up_at")
                cls._record(locked, ShipmentEventType.PICKED_UP, previous, actor, "Picked up")
            locked.depart()
            fields.extend(OtpService.clear(locked, OtpPurpose.PICKUP))
            locked.save(update_fields=fields)

            cls._record(
                locked,
                ShipmentEventType.IN_TRANSIT,
                ShipmentStatus.PICKED_UP,
                actor,
                "In transit",
            )
            emit_status_changed(locked, previous)
            return locked

        return cls._run("start shipment", _start)

    @classmethod
    def mark_out_for_delivery(cls, shipment, actor=None) -> ServiceResult[Shipment]:
        """IN_TRANSIT → OUT_FOR_DELIVERY. Clears the DELAYED overlay."""

        def _dispatch():
            locked = cls._lock(shipment)
            cls._require_status(
                locked, [ShipmentStatus.IN_TRANSIT], ShipmentStatus.OUT_FOR_DELIVERY
            )
            previous = locked.status
            locked.send_out_for_delivery()
            locked.save(
                update_fields=[
                    "status",
                    "out_for_delivery_at",
                    "is_delayed",
                    "delay_reason",
                    "updated_at",
                ]
            )
            cls._record(
                locked, ShipmentEventType.OUT_FOR_DELIVERY, previous, actor, "Out for delivery"
            )
            emit_status_changed(locked, previous)
            return locked

        return cls._run("mark out for delivery", _dispatch)

    @classmethod
    def flag_delay(cls, shipment, reason: str, actor=None) -> ServiceResult[Shipment]:
        """Raise the DELAYED overlay. Only while IN_TRANSIT."""

        def _flag():
            locked = cls._lock(shipment)
            cls._require_status(locked, [ShipmentStatus.IN_TRANSIT], None)
            locked.is_delayed = True
            locked.delay_reason = (reason or "")[:255]
            locked.save(update_fields=["is_delayed", "delay_reason", "updated_at"])
            cls._record(
                locked,
                ShipmentEventType.DELAY_FLAGGED,
                locked.status,
                actor,
                locked.delay_reason or "Delayed",
            )
            emit_status_changed(locked, locked.status)
            return locked

        return cls._run("flag delay", _flag)

    @classmethod
    def clear_delay(cls, shipment, actor=None) -> ServiceResult[Shipment]:
        def _clear():
            locked = cls._lock(shipment)
            cls._require_status(locked, [ShipmentStatus.IN_TRANSIT], None)
            if not locked.is_delayed:
                return locked
            locked.is_delayed = False
            locked.delay_reason = ""
            locked.save(update_fields=["is_delayed", "delay_reason", "updated_at"])
            cls._record(
                locked, ShipmentEventType.DELAY_CLEARED, locked.status, actor, "Delay cleared"
            )
            emit_status_changed(locked, locked.status)
            return locked

        return cls._run("clear delay", _clear)

    @classmethod
    def deliver(cls, shipment, otp: str, actor=None) -> ServiceResult[Shipment]:
        """
        Delivery checkpoint: IN_TRANSIT/OUT_FOR_DELIVERY → DELIVERED.

        Releases the vehicle and runs the settlement delivery hook (driver
        earnings AVAILABLE, PAY_LATER invoice issued) in the same
        transaction before returning.
        """
        from settlement.services import SettlementCoordinator

        def _deliver():
            locked = cls._lock(shipment)
            cls._require_status(
                locked,
                [ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY],
                ShipmentStatus.DELIVERED,
            )
            if locked.cancellation_requested_at is not None:
                raise CancellationPendingError(
                    "Shipment is being cancelled",
                    details={"shipment_id": str(locked.id), "current_status": locked.status},
                )
            OtpService.verify(locked, OtpPurpose.DELIVERY, otp)

            previous = locked.status
            locked.deliver()
            fields = ["status", "delivered_at", "is_delayed", "delay_reason", "updated_at"]
            fields.extend(OtpService.clear(locked, OtpPurpose.DELIVERY))
            locked.save(update_fields=fields)
            cls._release_vehicle(locked)
            cls._record(locked, ShipmentEventType.DELIVERED, previous, actor, "Delivered")

            SettlementCoordinator.apply_delivery(locked)

            emit_status_changed(locked, previous)
            return locked

        return cls._run("deliver shipment", _deliver)

    @classmethod
    def cancel(cls, shipment, reason: str = "", actor=None) -> ServiceResult[Shipment]:
        """
        Cancel a shipment that has not been delivered.

        The shipment is first marked under its row lock
        (cancellation_requested_at), which makes deliver refuse, and only
        then is a FUNDED invoice refunded. Cancellation completes once the
        refund succeeded; a failed refund clears the mark. PAID or DISPUTED
        invoices block cancellation (INVOICE_SETTLED).
        """
        from settlement.services import SettlementCoordinator

        shipment_id = getattr(shipment, "pk", shipment)

        def _request():
            locked = cls._lock(shipment_id)
            cls._require_status(locked, CANCELLABLE_STATUSES, ShipmentStatus.CANCELLED)
            invoice = SettlementCoordinator.invoice_for(locked)
            cls._check_invoice_allows_cancel(locked, invoice)
            if locked.cancellation_requested_at is None:
                locked.cancellation_requested_at = timezone.now()
                locked.save(update_fields=["cancellation_requested_at", "updated_at"])
            return invoice

        requested = cls._run("cancel shipment", _request)
        if not requested.success:
            return requested
        invoice = requested.data

        if invoice is not None and invoice.status == "FUNDED":
            refund = SettlementCoordinator.refund_invoice(
                invoice.id, reason=reason or "Shipment cancelled"
            )
            if not refund.success:
                Shipment.objects.filter(pk=shipment_id, status__in=CANCELLABLE_STATUSES).update(
                    cancellation_requested_at=None
                )
                return refund

        def _cancel():
            locked = cls._lock(shipment_id)
            cls._require_status(locked, CANCELLABLE_STATUSES, ShipmentStatus.CANCELLED)
            cls._check_invoice_allows_cancel(locked, SettlementCoordinator.invoice_for(locked))

            previous = locked.status
            locked.cancel(reason=reason or "")
            locked.save(
                update_fields=[
                    "status",
                    "cancelled_at",
                    "cancellation_reason",
                    "is_delayed",
                    "updated_at",
                ]
            )
            cls._release_vehicle(locked)
            cls._record(
                locked,
                ShipmentEventType.CANCELLED,
                previous,
                actor,
                locked.cancellation_reason or "Cancelled",
            )
            emit_status_changed(locked, previous)
            return locked

        return cls._run("cancel shipment", _cancel)

    @classmethod
    def close(cls, shipment, actor=None) -> ServiceResult[Shipment]:
        """DELIVERED → CLOSED."""

        def _close():
            return cls.apply_close(cls._lock(shipment), actor)

        return cls._run("close shipment", _close)

    # ==========================================================================
    # Lock-holding helpers (caller owns the transaction)
    # ==========================================================================

    @classmethod
    def apply_close(cls, locked: Shipment, actor=None) -> Shipment:
        """
        Close an already-locked DELIVERED shipment.

        Raises:
            InvalidShipmentTransition: Shipment is not DELIVERED
        """
        cls._require_status(locked, [ShipmentStatus.DELIVERED], ShipmentStatus.CLOSED)
        previous = locked.status
        locked.close()
        locked.save(update_fields=["status", "closed_at", "updated_at"])
        cls._record(locked, ShipmentEventType.CLOSED, previous, actor, "Closed")
        emit_status_changed(locked, previous)
        return locked

    @classmethod
    def record_event(cls, shipment: Shipment, event_type: str, description: str, **metadata):
        """Append an audit entry that does not change the physical status."""
        return cls._record(shipment, event_type, shipment.status, None, description, **metadata)

    # ==========================================================================
    # Internals
    # ==========================================================================

    @classmethod
    def _run(cls, context: str, operation: Callable) -> ServiceResult:
        """Run ``operation`` atomically and convert domain errors to a result."""
        try:
            with cls.atomic():
                return ServiceResult.success(operation())
        except (ConcurrentTransition, TransitionNotAllowed) as e:
            conflict = InvalidShipmentTransition(
                "Shipment status changed while the operation was running",
                details={"reason": str(e)},
            )
            return cls.handle_exception(conflict, context)
        except BaseApplicationError as e:
            return cls.handle_exception(e, context)

    @staticmethod
    def _get(shipment_id) -> Shipment:
        try:
            return Shipment.objects.get(pk=shipment_id)
        except (Shipment.DoesNotExist, DjangoValidationError):
            raise ShipmentNotFoundError(
                f"Shipment {shipment_id} not found",
                details={"shipment_id": str(shipment_id)},
            )

    @staticmethod
    def _lock(shipment) -> Shipment:
        shipment_id = getattr(shipment, "pk", shipment)
        try:
            return Shipment.objects.select_for_update().get(pk=shipment_id)
        except (Shipment.DoesNotExist, DjangoValidationError):
            raise ShipmentNotFoundError(
                f"Shipment {shipment_id} not found",
                details={"shipment_id": str(shipment_id)},
            )

    @staticmethod
    def _require_status(shipment: Shipment, allowed, target: str | None) -> None:
        if shipment.status not in allowed:
            action = f"move shipment to {target}" if target else "perform this action"
            raise InvalidShipmentTransition(
                f"Cannot {action} while it is {shipment.status}",
                details={
                    "shipment_id": str(shipment.id),
                    "current_status": shipment.status,
                    "target_status": target,
                },
            )

    @staticmethod
    def _check_invoice_allows_cancel(shipment: Shipment, invoice) -> None:
        if invoice is not None and invoice.status in SETTLED_INVOICE_STATUSES:
            raise ConflictError(
                f"Cannot cancel a shipment whose invoice is {invoice.status}",
                error_code="INVOICE_SETTLED",
                details={
                    "shipment_id": str(shipment.id),
                    "invoice_id": str(invoice.id),
                    "invoice_status": invoice.status,
                },
            )

    @staticmethod
    def _release_vehicle(shipment: Shipment) -> None:
        if shipment.assigned_vehicle_id:
            Vehicle.objects.filter(
                pk=shipment.assigned_vehicle_id, status=VehicleStatus.IN_USE
            ).update(status=VehicleStatus.AVAILABLE)

    @classmethod
    def _record(
        cls,
        shipment: Shipment,
        event_type: str,
        from_status: str,
        actor,
        description: str,
        **metadata,
    ) -> ShipmentEvent:
        cls.get_logger().info(
            f"Shipment {event_type.lower()}",
            extra={
                "shipment_id": str(shipment.id),
                "reference_id": shipment.reference_id,
                "from_status": from_status,
                "to_status": shipment.status,
            },
        )
        return ShipmentEvent.objects.create(
            shipment=shipment,
            event_type=event_type,
            from_status=from_status or "",
            to_status=shipment.status,
            description=description[:255],
            actor=actor if getattr(actor, "pk", None) else None,
            metadata=metadata,
        )


"""
Shipment-specific exceptions.

Exception Hierarchy:
    ShipmentError (base for the shipment domain)
    ├── InvalidShipmentTransition - Transition not allowed from current status
    ├── CancellationPendingError - Delivery while a cancellation refund is in flight
    ├── DriverNotApprovedError - Driver cannot be assigned
    ├── VehicleUnavailableError - Vehicle is not AVAILABLE
    └── OtpError
        ├── OtpAlreadyActiveError - An unexpired code is outstanding
        ├── OtpNotRequestedError - No code was requested for this checkpoint
        ├── OtpMismatchError - Wrong code (no state change)
        └── OtpExpiredError - Code older than the validity window

    ShipmentNotFoundError - Shipment lookup failures (inherits NotFoundError)

Usage:
    from shipments.exceptions import OtpMismatchError

    if not check_password(code, shipment.pickup_otp_hash):
        raise OtpMismatchError(
            "OTP does not match",
            details={"shipment_id": str(shipment.id), "purpose": "PICKUP"},
        )
"""

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)


class ShipmentError(BaseApplicationError):
    """Base exception for all shipment operations."""

    default_error_code: str = "SHIPMENT_ERROR"


class ShipmentNotFoundError(NotFoundError):
    default_error_code: str = "SHIPMENT_NOT_FOUND"


class InvalidShipmentTransition(ShipmentError, ConflictError):
    """
    Raised when a shipment is not in a status the transition accepts.

    Example:
        raise InvalidShipmentTransition(
            "Cannot deliver shipment in CREATED",
            details={"current_status": "CREATED", "target_status": "DELIVERED"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class CancellationPendingError(ShipmentError, ConflictError):
    """Raised when delivery is attempted while a cancellation refund is in flight."""

    default_error_code: str = "CANCELLATION_PENDING"


class DriverNotApprovedError(ShipmentError, ValidationError):
    default_error_code: str = "DRIVER_NOT_APPROVED"


class VehicleUnavailableError(ShipmentError, ConflictError):
    default_error_code: str = "VEHICLE_UNAVAILABLE"


class OtpError(ShipmentError, ValidationError):
    """Base for OTP checkpoint failures. None of them change state."""

    default_error_code: str = "OTP_ERROR"


class OtpAlreadyActiveError(OtpError):
    default_error_code: str = "OTP_ALREADY_ACTIVE"


class OtpNotRequestedError(OtpError):
    default_error_code: str = "OTP_NOT_REQUESTED"


class OtpMismatchError(OtpError):
    default_error_code: str = "OTP_MISMATCH"


class OtpExpiredError(OtpError):
    default_error_code: str = "OTP_EXPIRED"

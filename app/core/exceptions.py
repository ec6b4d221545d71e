"""
Domain exception hierarchy.

    BaseApplicationError
    ├── ValidationError - rejected input (bad OTP, bad signature, overdraw)
    ├── NotFoundError - missing shipment, invoice, payout, ...
    ├── PermissionDeniedError - actor may not touch the record
    ├── ConflictError - record is not in the status the operation needs
    └── ExternalServiceError - payment gateway or payout rail failure

Services catch these at their boundary and return them inside a failed
ServiceResult; settlement.views maps each family to an HTTP status
(400, 404, 403, 409, 502). App-specific subclasses live in
settlement.exceptions and shipments.exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base for all domain errors.

    Attributes:
        message: Human-readable description
        error_code: Machine-readable code clients switch on
        details: Extra context such as record ids and current status
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Rejected input. Never changes state."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    The acting user may not perform the operation.

    Example:
        if withdrawal.driver_id != driver.id:
            raise PermissionDeniedError("Withdrawal belongs to another driver")
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    The record is not in a state that allows the operation.

    Raised for invalid status transitions, lost optimistic-lock races and
    already-terminal records (resolved disputes, succeeded payouts).
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    A payment gateway or payout rail call failed.

    The owning record is marked FAILED before this surfaces; retries happen
    only through an explicit operator or driver action.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"

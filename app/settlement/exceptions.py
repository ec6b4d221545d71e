"""
Settlement-specific exceptions.

Exception Hierarchy:
    SettlementError (base for the settlement domain)
    ├── SignatureInvalidError - Gateway signature does not verify (validation)
    ├── InsufficientBalanceError - Withdrawal exceeds AVAILABLE earnings (validation)
    ├── InvoiceAmountLockedError - Amount change after DRAFT (conflict)
    ├── InvalidInvoiceTransition - Record not in an accepted status (conflict)
    ├── DisputeAlreadyOpenError - Shipment already has an OPEN dispute (conflict)
    ├── DisputeAlreadyResolvedError - Dispute resolved before (conflict)
    ├── EarningsNotAvailableError - Driver share not AVAILABLE for a DRIVER payout (conflict)
    ├── GatewayError - Payment gateway call failed (external)
    └── PayoutRailError - Payout rail call failed (external, is_retryable)

    OrderNotFoundError - Unknown gateway order id (inherits NotFoundError)
    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from settlement.exceptions import DisputeAlreadyResolvedError

    if dispute.status == DisputeStatus.RESOLVED:
        raise DisputeAlreadyResolvedError(
            "Dispute is already resolved",
            details={"dispute_id": str(dispute.id), "outcome": dispute.outcome},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Settlement Domain Exceptions
# =============================================================================


class SettlementError(BaseApplicationError):
    """
    Base exception for all settlement operations.

    Example:
        try:
            SettlementCoordinator.apply_delivery(shipment)
        except SettlementError as e:
            logger.error(f"Settlement failed: {e}")
    """

    default_error_code: str = "SETTLEMENT_ERROR"


class SignatureInvalidError(SettlementError, ValidationError):
    """
    Raised when a client confirmation or webhook signature does not verify.

    Nothing is read from an unverified body and nothing is written.
    """

    default_error_code: str = "SIGNATURE_INVALID"


class InsufficientBalanceError(SettlementError, ValidationError):
    default_error_code: str = "INSUFFICIENT_BALANCE"


class OrderNotFoundError(NotFoundError):
    """Raised when a gateway order id matches no booking record or invoice."""

    default_error_code: str = "ORDER_NOT_FOUND"


class SettlementNotFoundError(NotFoundError):
    """Invoice, payout, dispute or withdrawal lookup failures."""

    default_error_code: str = "NOT_FOUND"


class InvalidInvoiceTransition(SettlementError, ConflictError):
    """
    Raised when a ledger record is not in a status the operation accepts.

    Example:
        raise InvalidInvoiceTransition(
            "Cannot release invoice in ISSUED",
            details={"current_status": "ISSUED", "target_status": "PAID"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class InvoiceAmountLockedError(SettlementError, ConflictError):
    default_error_code: str = "INVOICE_AMOUNT_LOCKED"


class DisputeAlreadyOpenError(SettlementError, ConflictError):
    default_error_code: str = "DISPUTE_ALREADY_OPEN"


class DisputeAlreadyResolvedError(SettlementError, ConflictError):
    """Resolution is terminal; a second resolve leaves the outcome unchanged."""

    default_error_code: str = "DISPUTE_ALREADY_RESOLVED"


class EarningsNotAvailableError(SettlementError, ConflictError):
    """Driver earnings were not delivered yet or already claimed by another payout path."""

    default_error_code: str = "EARNINGS_NOT_AVAILABLE"


# =============================================================================
# External Collaborator Exceptions
# =============================================================================


class GatewayError(SettlementError, ExternalServiceError):
    """Payment gateway call failed (order creation, refund)."""

    default_error_code: str = "GATEWAY_ERROR"


class PayoutRailError(SettlementError, ExternalServiceError):
    """
    Payout rail call failed.

    ``is_retryable`` marks transient failures (timeouts, rate limits).
    Either way the owning Payout or DriverWithdrawal is marked FAILED;
    retries are explicit operator or driver actions.

    Example:
        raise PayoutRailError(
            "Destination account rejected",
            error_code="RAIL_DESTINATION_INVALID",
            rail_code="invalid_vpa",
        )
    """

    default_error_code: str = "PAYOUT_RAIL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        rail_code: str | None = None,
        is_retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if rail_code:
            details["rail_code"] = rail_code
        super().__init__(message, error_code=error_code, details=details)
        self.rail_code = rail_code
        self.is_retryable = is_retryable


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another worker holds the lock (blocking mode timed out, or
    non-blocking mode found it taken).
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"

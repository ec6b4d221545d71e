"""
Status enums for settlement models.

These are Django TextChoices for database storage and admin integration;
the transitions themselves are django-fsm methods on the models.

State Machines Overview:

Invoice:
    DRAFT → ISSUED → FUNDED → PAID
    ISSUED → PAID (PAY_LATER settlement)
    FUNDED/PAID → DISPUTED → PAID | REFUNDED
    FUNDED → REFUNDED (cancellation before delivery)

Payment:
    PENDING → SUCCEEDED | FAILED

Payout:
    PENDING → SUCCEEDED | FAILED
    FAILED → PENDING (operator retry)

DriverWithdrawal:
    PENDING → PROCESSING → SUCCESS | FAILED
    PENDING → SUCCESS | FAILED (rail settles synchronously)
    PENDING → CANCELLED

Dispute:
    OPEN → RESOLVED (terminal)

PendingShipment:
    PENDING → COMPLETED | FAILED
"""

from django.db import models


class InvoiceStatus(models.TextChoices):
    """
    Escrow lifecycle of an invoice.

    Terminal states: PAID (unless disputed), REFUNDED
    The amount is frozen once the invoice leaves DRAFT.
    """

    DRAFT = "DRAFT", "Draft"
    ISSUED = "ISSUED", "Issued"
    FUNDED = "FUNDED", "Funded"
    PAID = "PAID", "Paid"
    DISPUTED = "DISPUTED", "Disputed"
    REFUNDED = "REFUNDED", "Refunded"


class PaymentKind(models.TextChoices):
    SETTLEMENT = "SETTLEMENT", "Settlement"
    ESCROW_FUND = "ESCROW_FUND", "Escrow Fund"
    ESCROW_RELEASE = "ESCROW_RELEASE", "Escrow Release"
    ESCROW_REFUND = "ESCROW_REFUND", "Escrow Refund"


class PaymentStatus(models.TextChoices):
    """SUCCEEDED is immutable; only compensating payments may follow."""

    PENDING = "PENDING", "Pending"
    SUCCEEDED = "SUCCEEDED", "Succeeded"
    FAILED = "FAILED", "Failed"


class RecipientType(models.TextChoices):
    DRIVER = "DRIVER", "Driver"
    LOGISTICS_ORG = "LOGISTICS_ORG", "Logistics Org"


class PayoutStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SUCCEEDED = "SUCCEEDED", "Succeeded"
    FAILED = "FAILED", "Failed"


class WithdrawalStatus(models.TextChoices):
    """
    Driver withdrawal lifecycle.

    Terminal states: SUCCESS, FAILED, CANCELLED
    """

    PENDING = "PENDING", "Pending"
    PROCESSING = "PROCESSING", "Processing"
    SUCCESS = "SUCCESS", "Success"
    FAILED = "FAILED", "Failed"
    CANCELLED = "CANCELLED", "Cancelled"


class DisputeStatus(models.TextChoices):
    OPEN = "OPEN", "Open"
    RESOLVED = "RESOLVED", "Resolved"


class DisputeOutcome(models.TextChoices):
    RELEASE = "RELEASE", "Release"
    REFUND = "REFUND", "Refund"


class PendingShipmentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


# Withdrawals whose claimed shipments are still in flight
IN_FLIGHT_WITHDRAWAL_STATUSES = [WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING]

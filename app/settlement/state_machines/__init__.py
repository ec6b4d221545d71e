"""
State enums for settlement models.
"""

from settlement.state_machines.states import (
    IN_FLIGHT_WITHDRAWAL_STATUSES,
    DisputeOutcome,
    DisputeStatus,
    InvoiceStatus,
    PaymentKind,
    PaymentStatus,
    PayoutStatus,
    PendingShipmentStatus,
    RecipientType,
    WebhookEventStatus,
    WithdrawalStatus,
)

__all__ = [
    "IN_FLIGHT_WITHDRAWAL_STATUSES",
    "DisputeOutcome",
    "DisputeStatus",
    "InvoiceStatus",
    "PaymentKind",
    "PaymentStatus",
    "PayoutStatus",
    "PendingShipmentStatus",
    "RecipientType",
    "WebhookEventStatus",
    "WithdrawalStatus",
]

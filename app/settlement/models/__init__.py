"""
Settlement ledger models.

- Invoice: Escrow invoice, one per shipment
- Payment: Money movement against an invoice
- Payout: Exactly-once disbursement per (invoice, recipient type)
- DriverWithdrawal: Driver transfer of AVAILABLE earnings
- Dispute: Compensating path for a funded or paid invoice
- PendingShipment: Idempotency record keyed by gateway order id
- WebhookEvent: Gateway webhook tracking for idempotent processing
"""

from settlement.models.dispute import Dispute
from settlement.models.invoice import LIVE_PAYMENT_STATUSES, Invoice, Payment
from settlement.models.payout import Payout
from settlement.models.pending_shipment import PendingShipment
from settlement.models.webhook_event import WebhookEvent
from settlement.models.withdrawal import DriverWithdrawal

__all__ = [
    "LIVE_PAYMENT_STATUSES",
    "Dispute",
    "DriverWithdrawal",
    "Invoice",
    "Payment",
    "Payout",
    "PendingShipment",
    "WebhookEvent",
]

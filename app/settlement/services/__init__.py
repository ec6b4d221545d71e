"""
Settlement services.

- SettlementCoordinator: booking, payment confirmation, invoice lifecycle,
  disputes, delivery hook, earnings summary
- PayoutService: exactly-once disbursement of released invoices
- WithdrawalService: driver withdrawals of AVAILABLE earnings
"""

from settlement.services.coordinator import (
    EarningsSummary,
    PaymentConfirmation,
    SettlementCoordinator,
)
from settlement.services.payouts import PayoutService
from settlement.services.withdrawals import WithdrawalService

__all__ = [
    "EarningsSummary",
    "PaymentConfirmation",
    "PayoutService",
    "SettlementCoordinator",
    "WithdrawalService",
]

"""
Adapters for the external collaborators of the settlement core.

All calls to the payment gateway and the payout rail go through these
adapters so signatures, idempotency keys and error translation are
handled in one place.

Usage:
    from settlement.adapters import SandboxGateway, load_payout_rail
"""

from settlement.adapters.common import IdempotencyKeyGenerator, backoff_delay
from settlement.adapters.gateway import GatewayOrder, GatewayRefund, SandboxGateway
from settlement.adapters.payout_rail import (
    MockInstantPayoutRail,
    PayoutInstruction,
    PayoutRail,
    PayoutRailResult,
    RailStatus,
    StripePayoutRail,
    load_payout_rail,
)

__all__ = [
    "GatewayOrder",
    "GatewayRefund",
    "IdempotencyKeyGenerator",
    "MockInstantPayoutRail",
    "PayoutInstruction",
    "PayoutRail",
    "PayoutRailResult",
    "RailStatus",
    "SandboxGateway",
    "StripePayoutRail",
    "backoff_delay",
    "load_payout_rail",
]

"""
Payout rail adapters.

A payout rail moves money from the platform to a destination:

    disburse(PayoutInstruction) -> PayoutRailResult(payout_id, status)
    fetch_status(payout_id)     -> PayoutRailResult

``status`` is PROCESSING (rail accepted, outcome pending), SUCCEEDED or
FAILED. Every instruction carries an idempotency key; replaying a key must
return the original payout instead of paying again.

Failures raise PayoutRailError with ``is_retryable`` set for transient
problems. Callers record FAILED either way and never retry on their own.

Available rails (selected with SETTLEMENT_PAYOUT_RAIL):
- MockInstantPayoutRail: settles instantly, no network (default)
- StripePayoutRail: Stripe Connect transfers

Usage:
    from settlement.adapters import PayoutInstruction, load_payout_rail

    rail = load_payout_rail()
    result = rail.disburse(
        PayoutInstruction(
            amount_paise=350000,
            destination="driver@upi",
            reference=str(payout.id),
            idempotency_key="payout:<id>:1:ab12cd34",
        )
    )
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import stripe
from django.conf import settings
from django.utils.module_loading import import_string

from settlement.exceptions import PayoutRailError


class RailStatus:
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class PayoutInstruction:
    """
    Attributes:
        amount_paise: Amount to send
        destination: UPI handle or rail account reference
        reference: Our record id (payout or withdrawal)
        idempotency_key: Stable per attempt
    """

    amount_paise: int
    destination: str
    reference: str
    idempotency_key: str
    currency: str = "INR"
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_paise <= 0:
            raise ValueError("amount_paise must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class PayoutRailResult:
    payout_id: str
    status: str
    failure_reason: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RailStatus.SUCCEEDED, RailStatus.FAILED)


class PayoutRail:
    """Base class for payout rails."""

    def get_logger(self) -> logging.Logger:
        return logging.getLogger(f"{self.__module__}.{self.__class__.__name__}")

    def disburse(self, instruction: PayoutInstruction) -> PayoutRailResult:
        raise NotImplementedError

    def fetch_status(self, payout_id: str) -> PayoutRailResult:
        raise NotImplementedError


class MockInstantPayoutRail(PayoutRail):
    """
    Instant rail without network calls.

    The payout id is derived from the idempotency key, so a replayed
    instruction returns the same payout. A destination without "@" is
    rejected the way a UPI rail rejects an invalid handle.
    """

    def disburse(self, instruction: PayoutInstruction) -> PayoutRailResult:
        if "@" not in (instruction.destination or ""):
            raise PayoutRailError(
                f"Invalid payout destination '{instruction.destination}'",
                error_code="RAIL_DESTINATION_INVALID",
                rail_code="invalid_vpa",
                details={"reference": instruction.reference},
            )
        payout_id = "pout_" + hashlib.sha256(instruction.idempotency_key.encode()).hexdigest()[:14]
        self.get_logger().info(
            "Mock payout settled",
            extra={
                "payout_id": payout_id,
                "reference": instruction.reference,
                "amount_paise": instruction.amount_paise,
            },
        )
        return PayoutRailResult(payout_id=payout_id, status=RailStatus.SUCCEEDED)

    def fetch_status(self, payout_id: str) -> PayoutRailResult:
        return PayoutRailResult(payout_id=payout_id, status=RailStatus.SUCCEEDED)


class StripePayoutRail(PayoutRail):
    """
    Stripe Connect transfers as a payout rail.

    ``destination`` is the connected account id (acct_xxx). A transfer is
    final once created; a reversed transfer reads as FAILED.

    Configuration (via settings):
    - STRIPE_SECRET_KEY
    - STRIPE_API_TIMEOUT_SECONDS (default: 10)
    - STRIPE_MAX_RETRIES (default: 2)
    """

    def _configure(self) -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 2)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    def disburse(self, instruction: PayoutInstruction) -> PayoutRailResult:
        self._configure()
        log_context = {
            "operation": "create_transfer",
            "reference": instruction.reference,
            "amount_paise": instruction.amount_paise,
            "destination": instruction.destination,
            "idempotency_key": instruction.idempotency_key,
        }
        start_time = time.time()
        self.get_logger().info("Starting Stripe transfer", extra=log_context)

        try:
            transfer = stripe.Transfer.create(
                amount=instruction.amount_paise,
                currency=instruction.currency.lower(),
                destination=instruction.destination,
                metadata={"reference": instruction.reference, **instruction.metadata},
                idempotency_key=instruction.idempotency_key,
            )
        except stripe.StripeError as e:
            self._translate_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        self.get_logger().info(
            "Stripe transfer created",
            extra={
                **log_context,
                "transfer_id": transfer.id,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return self._to_result(transfer)

    def fetch_status(self, payout_id: str) -> PayoutRailResult:
        self._configure()
        try:
            transfer = stripe.Transfer.retrieve(payout_id)
        except stripe.StripeError as e:
            self._translate_error(e, {"operation": "retrieve_transfer", "payout_id": payout_id}, 0)
            raise
        return self._to_result(transfer)

    @staticmethod
    def _to_result(transfer) -> PayoutRailResult:
        if getattr(transfer, "reversed", False):
            return PayoutRailResult(
                payout_id=transfer.id,
                status=RailStatus.FAILED,
                failure_reason="Transfer was reversed",
                raw_response=transfer.to_dict(),
            )
        return PayoutRailResult(
            payout_id=transfer.id,
            status=RailStatus.SUCCEEDED,
            raw_response=transfer.to_dict(),
        )

    def _translate_error(self, error: Exception, log_context: dict, duration_ms: float) -> None:
        """
        Map Stripe SDK errors to PayoutRailError.

        Raises:
            PayoutRailError: Always; ``is_retryable`` for rate limits,
                connection problems and Stripe server errors
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise PayoutRailError(
                "Stripe rate limit exceeded",
                error_code="RAIL_RATE_LIMITED",
                rail_code="rate_limit",
                is_retryable=True,
            )
        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise PayoutRailError(
                "Could not connect to Stripe",
                error_code="RAIL_UNAVAILABLE",
                rail_code="api_connection_error",
                is_retryable=True,
            )
        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid transfer request",
                extra={**log_context, "stripe_code": error.code},
            )
            raise PayoutRailError(
                str(error),
                error_code="RAIL_DESTINATION_INVALID"
                if "account" in str(error).lower()
                else "RAIL_REQUEST_INVALID",
                rail_code=error.code,
            )
        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise PayoutRailError(
                "Stripe authentication failed",
                error_code="RAIL_MISCONFIGURED",
                rail_code="authentication_error",
            )
        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise PayoutRailError(
                "Stripe service error",
                error_code="RAIL_UNAVAILABLE",
                rail_code="api_error",
                is_retryable=True,
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise PayoutRailError(f"Unexpected Stripe error: {error}", rail_code="unknown_error")


def load_payout_rail() -> PayoutRail:
    """Instantiate the rail named by SETTLEMENT_PAYOUT_RAIL."""
    return import_string(settings.SETTLEMENT_PAYOUT_RAIL)()

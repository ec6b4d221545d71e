"""
Payout service for money leaving the platform when an invoice is released.

Exactly-once comes from the ``(invoice, recipient_type)`` unique
constraint: disburse() inserts the Payout row first and only then calls
the rail. A concurrent caller loses the insert, gets the winner's row back
and never reaches the rail.

Rail calls follow the two-phase pattern:
1. Phase 1: Take the payout lock, read the row and check it is PENDING
2. Phase 2: Call the payout rail (outside any transaction)
3. Phase 3: Lock the row again and record SUCCEEDED / FAILED

If the process dies between phase 2 and 3 the row stays PENDING and
reconcile_payout() replays the instruction with the same idempotency key;
the rail answers with the original payout instead of paying twice.

Failures never retry automatically. FAILED payouts are retried by an
operator through retry_payout().

Usage:
    from settlement.services import PayoutService

    result = PayoutService.disburse(invoice, RecipientType.LOGISTICS_ORG, None, 150000)
    if result.success:
        print(result.data.status)           # SUCCEEDED
    elif result.error_code == "RAIL_DESTINATION_INVALID":
        alert_operator(result.error)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import ServiceResult
from settlement.adapters import (
    IdempotencyKeyGenerator,
    PayoutInstruction,
    PayoutRail,
    PayoutRailResult,
    RailStatus,
    load_payout_rail,
)
from settlement.exceptions import (
    EarningsNotAvailableError,
    InvalidInvoiceTransition,
    PayoutRailError,
)
from settlement.locks import DistributedLock, check_version, lock_key
from settlement.models import Payout
from settlement.payout_policies import share_to_paise
from settlement.services.base import SettlementService
from settlement.signals import emit_payout_status
from settlement.state_machines import PayoutStatus, RecipientType
from shipments.models import Shipment
from shipments.states import EarningsStatus, ShipmentStatus

if TYPE_CHECKING:
    from datetime import timedelta

    from settlement.models import Invoice


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Distributed lock TTL for one rail call (seconds)
PAYOUT_LOCK_TTL = 120

# Lock acquisition timeout (seconds)
PAYOUT_LOCK_TIMEOUT = 10.0


class PayoutService(SettlementService):
    """
    Disbursement of released invoices.

    Safety Guarantees:
        - One Payout row per (invoice, recipient type), enforced by the database
        - Distributed lock prevents two workers calling the rail for one payout
        - The rail is never called inside a transaction that could roll back
        - Idempotency key (payout id + attempt) makes replays harmless
    """

    # Payout rail - can be injected for testing
    _payout_rail: PayoutRail | None = None

    @classmethod
    def get_payout_rail(cls) -> PayoutRail:
        if cls._payout_rail is None:
            cls._payout_rail = load_payout_rail()
        return cls._payout_rail

    @classmethod
    def set_payout_rail(cls, rail: PayoutRail | None) -> None:
        """Inject a rail (None resets to SETTLEMENT_PAYOUT_RAIL)."""
        cls._payout_rail = rail

    # =========================================================================
    # Reservation
    # =========================================================================

    @classmethod
    def reserve(
        cls,
        invoice: Invoice,
        recipient_type: str,
        recipient,
        amount_paise: int,
        destination: str = "",
    ) -> tuple[Payout, bool]:
        """
        Insert the Payout row for (invoice, recipient_type) or return the
        existing one.

        Returns:
            (payout, created)
        """
        try:
            with transaction.atomic():
                payout = Payout.objects.create(
                    invoice=invoice,
                    recipient_type=recipient_type,
                    recipient=recipient,
                    destination=destination,
                    amount_paise=amount_paise,
                    currency=invoice.currency,
                    attempts=1,
                )
        except IntegrityError:
            payout = Payout.objects.get(invoice=invoice, recipient_type=recipient_type)
            cls.get_logger().info(
                "Payout already reserved",
                extra={
                    "payout_id": str(payout.id),
                    "invoice_id": str(invoice.id),
                    "recipient_type": recipient_type,
                    "status": payout.status,
                },
            )
            return payout, False

        cls.get_logger().info(
            "Payout reserved",
            extra={
                "payout_id": str(payout.id),
                "invoice_id": str(invoice.id),
                "recipient_type": recipient_type,
                "amount_paise": amount_paise,
            },
        )
        emit_payout_status(payout)
        return payout, True

    @classmethod
    def reserve_release(cls, invoice: Invoice) -> list[Payout]:
        """
        Reserve the payouts a released invoice owes.

        The split comes from the shipment's stored payout breakdown. The
        operator share goes to SETTLEMENT_OPERATOR_PAYOUT_DESTINATION; the
        driver share is paid here only when DRIVER is listed in
        SETTLEMENT_RELEASE_RECIPIENTS (otherwise drivers withdraw it).

        Must run inside the release transaction: a DRIVER payout claims the
        shipment's earnings in the same commit.
        """
        shipment = invoice.shipment
        breakdown = shipment.payout_breakdown or {}
        driver_paise = share_to_paise(breakdown["driver_share"]) if breakdown else 0
        driver_paise = min(driver_paise, invoice.amount_paise)

        payouts = []
        for recipient_type in settings.SETTLEMENT_RELEASE_RECIPIENTS:
            if recipient_type == RecipientType.DRIVER:
                payout = cls._reserve_driver_share(invoice, shipment, driver_paise)
                if payout is None:
                    continue
            else:
                operator_paise = invoice.amount_paise - driver_paise
                if operator_paise <= 0:
                    continue
                payout, _ = cls.reserve(
                    invoice,
                    RecipientType.LOGISTICS_ORG,
                    None,
                    operator_paise,
                    settings.SETTLEMENT_OPERATOR_PAYOUT_DESTINATION,
                )
            payouts.append(payout)
        return payouts

    @classmethod
    def _reserve_driver_share(cls, invoice: Invoice, shipment, amount_paise: int) -> Payout | None:
        """
        DRIVER payout for a released invoice, or None.

        Earnings are paid once, either through a withdrawal or here. When
        they are not AVAILABLE the share stays on the withdrawal path.
        """
        driver = shipment.assigned_driver
        if driver is None or amount_paise <= 0:
            return None
        try:
            payout, _ = cls._reserve_driver_payout(invoice, driver, amount_paise, driver.upi_id)
        except EarningsNotAvailableError:
            cls.get_logger().warning(
                "Driver share not paid on release, earnings not available",
                extra={
                    "invoice_id": str(invoice.id),
                    "shipment_id": str(shipment.pk),
                    "shipment_status": shipment.status,
                    "earnings_status": shipment.driver_earnings_status,
                },
            )
            return None
        return payout

    @classmethod
    def _reserve_driver_payout(
        cls, invoice: Invoice, driver, amount_paise: int, destination: str
    ) -> tuple[Payout, bool]:
        """
        Reserve the DRIVER payout and move the shipment's earnings to
        PAID_OUT in one transaction.

        Only AVAILABLE earnings of a delivered shipment qualify; claimed,
        withdrawn or undelivered earnings raise EarningsNotAvailableError.
        """
        with transaction.atomic():
            existing = Payout.objects.filter(
                invoice=invoice, recipient_type=RecipientType.DRIVER
            ).first()
            if existing is not None:
                return existing, False

            now = timezone.now()
            claimed = Shipment.objects.filter(
                pk=invoice.shipment_id,
                assigned_driver=driver,
                status__in=[ShipmentStatus.DELIVERED, ShipmentStatus.CLOSED],
                driver_earnings_status=EarningsStatus.AVAILABLE,
            ).update(
                driver_earnings_status=EarningsStatus.PAID_OUT,
                driver_earnings_withdrawn_at=now,
                updated_at=now,
            )
            if not claimed:
                raise EarningsNotAvailableError(
                    "Driver earnings for this shipment are not available",
                    details={"invoice_id": str(invoice.id), "shipment_id": str(invoice.shipment_id)},
                )
            return cls.reserve(invoice, RecipientType.DRIVER, driver, amount_paise, destination)

    # =========================================================================
    # Disbursement
    # =========================================================================

    @classmethod
    def disburse(
        cls,
        invoice: Invoice,
        recipient_type: str,
        recipient,
        amount_paise: int,
        destination: str = "",
    ) -> ServiceResult[Payout]:
        """
        Pay ``amount_paise`` to one recipient of ``invoice``, exactly once.

        A second call for the same (invoice, recipient_type) returns the
        existing row and does not touch the rail. DRIVER payouts also claim
        the shipment's AVAILABLE earnings, so they cannot be withdrawn too.
        """
        try:
            if recipient_type == RecipientType.DRIVER:
                payout, created = cls._reserve_driver_payout(
                    invoice, recipient, amount_paise, destination
                )
            else:
                payout, created = cls.reserve(
                    invoice, recipient_type, recipient, amount_paise, destination
                )
        except (EarningsNotAvailableError, IntegrityError) as e:
            return cls.handle_exception(e, "disburse payout")

        if not created:
            return ServiceResult.success(payout)
        return cls.execute(payout.id)

    @classmethod
    def execute(cls, payout_id) -> ServiceResult[Payout]:
        """
        Send a PENDING payout to the rail and record the outcome.

        Anything not PENDING is returned unchanged.
        """
        log_context = {"payout_id": str(payout_id)}
        try:
            with DistributedLock(
                lock_key("payout", payout_id),
                ttl=PAYOUT_LOCK_TTL,
                timeout=PAYOUT_LOCK_TIMEOUT,
            ):
                # Phase 1: read and validate
                payout = cls._get(Payout, payout_id)
                if payout.status != PayoutStatus.PENDING:
                    logger.info(
                        "Payout is not pending, nothing to send",
                        extra={**log_context, "status": payout.status},
                    )
                    return ServiceResult.success(payout)

                instruction = cls._instruction(payout)

                # Phase 2: rail call outside any transaction
                try:
                    rail_result = cls.get_payout_rail().disburse(instruction)
                except PayoutRailError as e:
                    logger.warning(
                        "Payout rail rejected payout",
                        extra={
                            **log_context,
                            "error_code": e.error_code,
                            "is_retryable": e.is_retryable,
                        },
                    )
                    cls._record_outcome(
                        payout_id,
                        PayoutRailResult(
                            payout_id="", status=RailStatus.FAILED, failure_reason=e.message
                        ),
                    )
                    return cls.handle_exception(e, "execute payout")

                # Phase 3: record outcome
                payout = cls._record_outcome(payout_id, rail_result)
                return ServiceResult.success(payout)

        except BaseApplicationError as e:
            return cls.handle_exception(e, "execute payout")

    @classmethod
    def retry_payout(cls, payout_id, expected_version: int | None = None, actor=None):
        """
        Operator retry: FAILED -> PENDING with a fresh attempt, then execute.

        ``expected_version`` rejects the retry with STALE_RECORD when the
        operator acted on an outdated view of the payout.
        """

        def _reset():
            if expected_version is not None:
                payout = check_version(Payout, payout_id, expected_version)
            else:
                payout = cls._lock(Payout, payout_id)
            if payout.status != PayoutStatus.FAILED:
                raise InvalidInvoiceTransition(
                    f"Cannot retry a payout in {payout.status}",
                    details={
                        "payout_id": str(payout.id),
                        "current_status": payout.status,
                        "target_status": PayoutStatus.PENDING,
                    },
                )
            payout.retry()
            payout.attempts += 1
            payout.save(
                update_fields=[
                    "status",
                    "attempts",
                    "failed_at",
                    "failure_reason",
                    "rail_payout_id",
                    "updated_at",
                ]
            )
            cls.get_logger().info(
                "Payout retry requested",
                extra={
                    "payout_id": str(payout.id),
                    "attempt": payout.attempts,
                    "actor_id": str(getattr(actor, "pk", "") or ""),
                },
            )
            emit_payout_status(payout)
            return payout

        reset = cls._run("retry payout", _reset)
        if not reset.success:
            return reset
        return cls.execute(payout_id)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    @classmethod
    def reconcile_payout(cls, payout_id) -> ServiceResult[Payout]:
        """
        Settle a payout left PENDING by a crash or a PROCESSING rail answer.

        With a rail payout id the rail is asked for the status; without one
        the original instruction is replayed under the same idempotency key.
        """
        try:
            payout = cls._get(Payout, payout_id)
        except BaseApplicationError as e:
            return cls.handle_exception(e, "reconcile payout")

        if payout.status != PayoutStatus.PENDING:
            return ServiceResult.success(payout)
        if not payout.rail_payout_id:
            return cls.execute(payout.id)

        try:
            rail_result = cls.get_payout_rail().fetch_status(payout.rail_payout_id)
        except PayoutRailError as e:
            return cls.handle_exception(e, "reconcile payout")
        return ServiceResult.success(cls._record_outcome(payout.id, rail_result))

    @classmethod
    def apply_rail_status(cls, rail_payout_id: str, status: str, reason: str = "") -> Payout | None:
        """
        Apply a rail notification (webhook) to the matching payout.

        Returns None when no payout carries ``rail_payout_id``. SUCCEEDED
        payouts are immutable; a late failure notice for one is logged and
        ignored.
        """
        payout = Payout.objects.filter(rail_payout_id=rail_payout_id).first()
        if payout is None:
            return None
        return cls._record_outcome(
            payout.id,
            PayoutRailResult(payout_id=rail_payout_id, status=status, failure_reason=reason),
        )

    @staticmethod
    def stale_pending(older_than: timedelta):
        """PENDING payouts untouched for ``older_than`` (reconciliation candidates)."""
        return Payout.objects.filter(
            status=PayoutStatus.PENDING,
            updated_at__lte=timezone.now() - older_than,
        ).order_by("updated_at")

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _instruction(payout: Payout) -> PayoutInstruction:
        return PayoutInstruction(
            amount_paise=payout.amount_paise,
            destination=payout.destination,
            reference=str(payout.id),
            idempotency_key=IdempotencyKeyGenerator.generate(
                "payout", payout.id, max(payout.attempts, 1)
            ),
            currency=payout.currency,
            metadata={
                "invoice_id": str(payout.invoice_id),
                "recipient_type": payout.recipient_type,
            },
        )

    @classmethod
    def _record_outcome(cls, payout_id, rail_result: PayoutRailResult) -> Payout:
        """Phase 3: apply a rail answer to a still-PENDING payout."""
        with transaction.atomic():
            payout = cls._lock(Payout, payout_id)
            if payout.status != PayoutStatus.PENDING:
                if rail_result.status == RailStatus.FAILED:
                    logger.warning(
                        "Ignoring rail failure for settled payout",
                        extra={"payout_id": str(payout.id), "status": payout.status},
                    )
                return payout

            if rail_result.status == RailStatus.SUCCEEDED:
                payout.succeed(rail_result.payout_id or None)
                fields = ["status", "rail_payout_id", "paid_at", "updated_at"]
            elif rail_result.status == RailStatus.FAILED:
                payout.fail(rail_result.failure_reason or "Payout rail failure")
                fields = ["status", "failed_at", "failure_reason", "updated_at"]
            else:
                if rail_result.payout_id and not payout.rail_payout_id:
                    payout.rail_payout_id = rail_result.payout_id
                payout.set_meta("rail_status", rail_result.status)
                payout.save(update_fields=["rail_payout_id", "metadata", "updated_at"])
                logger.info(
                    "Payout accepted by rail, awaiting outcome",
                    extra={"payout_id": str(payout.id), "rail_payout_id": rail_result.payout_id},
                )
                return payout

            payout.save(update_fields=fields)
            logger.info(
                f"Payout {payout.status.lower()}",
                extra={
                    "payout_id": str(payout.id),
                    "invoice_id": str(payout.invoice_id),
                    "rail_payout_id": payout.rail_payout_id,
                    "amount_paise": payout.amount_paise,
                },
            )
            emit_payout_status(payout)
            return payout

"""
Driver withdrawal pipeline.

    request_withdrawal   claim AVAILABLE shipments, create PENDING, queue execution
    execute              PENDING -> PROCESSING -> rail -> SUCCESS | FAILED
    cancel_withdrawal    PENDING -> CANCELLED (claims roll back)
    reconcile_withdrawal re-query the rail for a stuck withdrawal

Claims are conditional updates (``WHERE driver_earnings_status =
'AVAILABLE'``), so two concurrent requests can never claim the same
shipment. A withdrawal that ends FAILED or CANCELLED hands exactly the
shipments in its breakdown back to AVAILABLE.

The rail call runs outside any transaction and only after the withdrawal
moved to PROCESSING, so a driver cannot cancel a withdrawal the rail may
already be paying.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from core.exceptions import BaseApplicationError, PermissionDeniedError, ValidationError
from core.services import ServiceResult
from settlement.adapters import (
    IdempotencyKeyGenerator,
    PayoutInstruction,
    PayoutRailResult,
    RailStatus,
)
from settlement.exceptions import (
    InsufficientBalanceError,
    InvalidInvoiceTransition,
    PayoutRailError,
)
from settlement.locks import DistributedLock, lock_key
from settlement.models import DriverWithdrawal
from settlement.services.base import SettlementService
from settlement.services.payouts import PayoutService
from settlement.signals import emit_withdrawal_status
from settlement.state_machines import IN_FLIGHT_WITHDRAWAL_STATUSES, WithdrawalStatus
from shipments.models import Shipment
from shipments.states import EarningsStatus

logger = logging.getLogger(__name__)

WITHDRAWAL_LOCK_TTL = 120
WITHDRAWAL_LOCK_TIMEOUT = 10.0


class WithdrawalService(SettlementService):
    """
    Driver-initiated payouts of AVAILABLE earnings.

    Uses the same payout rail as PayoutService (``PayoutService.get_payout_rail``).
    """

    @classmethod
    def available_balance(cls, driver) -> int:
        return (
            Shipment.objects.filter(
                assigned_driver=driver,
                driver_earnings_status=EarningsStatus.AVAILABLE,
            ).aggregate(total=Sum("driver_earnings_paise"))["total"]
            or 0
        )

    @classmethod
    def request_withdrawal(
        cls, driver, amount_paise: int, upi_id: str | None = None
    ) -> ServiceResult[DriverWithdrawal]:
        """
        Claim enough AVAILABLE shipments (oldest first) to cover
        ``amount_paise`` and create a PENDING withdrawal.

        The withdrawal pays the full sum of the claimed shipments, which
        can exceed the requested amount. The rail call is queued after
        commit (``settlement.tasks.execute_withdrawal``).
        """
        upi_id = (upi_id or getattr(driver, "upi_id", "") or "").strip()

        def _request():
            if not getattr(driver, "is_driver", False):
                raise PermissionDeniedError(
                    "Only drivers can withdraw earnings",
                    details={"user_id": str(driver.pk)},
                )
            if amount_paise is None or amount_paise <= 0:
                raise ValidationError(
                    "Withdrawal amount must be positive",
                    error_code="INVALID_AMOUNT",
                    details={"amount_paise": amount_paise},
                )
            if not upi_id:
                raise ValidationError(
                    "A UPI id is required for withdrawals",
                    error_code="UPI_ID_REQUIRED",
                )

            candidates = list(
                Shipment.objects.select_for_update()
                .filter(
                    assigned_driver=driver,
                    driver_earnings_status=EarningsStatus.AVAILABLE,
                    driver_earnings_paise__gt=0,
                )
                .order_by("driver_earnings_available_at", "id")
            )
            available = sum(s.driver_earnings_paise for s in candidates)
            if amount_paise > available:
                raise InsufficientBalanceError(
                    "Requested amount exceeds available earnings",
                    details={"requested_paise": amount_paise, "available_paise": available},
                )

            breakdown = []
            claimed_total = 0
            for shipment in candidates:
                if claimed_total >= amount_paise:
                    break
                claimed = Shipment.objects.filter(
                    pk=shipment.pk,
                    driver_earnings_status=EarningsStatus.AVAILABLE,
                ).update(
                    driver_earnings_status=EarningsStatus.WITHDRAWN,
                    version=F("version") + 1,
                    updated_at=timezone.now(),
                )
                if not claimed:
                    continue
                breakdown.append(
                    {
                        "shipment_id": str(shipment.pk),
                        "reference_id": shipment.reference_id,
                        "amount_paise": shipment.driver_earnings_paise,
                    }
                )
                claimed_total += shipment.driver_earnings_paise

            if claimed_total < amount_paise:
                raise InsufficientBalanceError(
                    "Earnings were claimed concurrently",
                    details={"requested_paise": amount_paise, "claimed_paise": claimed_total},
                )

            withdrawal = DriverWithdrawal.objects.create(
                driver=driver,
                requested_amount_paise=amount_paise,
                amount_paise=claimed_total,
                currency=settings.SETTLEMENT_CURRENCY,
                upi_id=upi_id,
                breakdown=breakdown,
            )
            cls.get_logger().info(
                "Withdrawal requested",
                extra={
                    "withdrawal_id": str(withdrawal.id),
                    "driver_id": str(driver.pk),
                    "requested_paise": amount_paise,
                    "amount_paise": claimed_total,
                    "shipments": len(breakdown),
                },
            )
            emit_withdrawal_status(withdrawal)
            transaction.on_commit(lambda: cls._queue_execution(withdrawal.id))
            return withdrawal

        return cls._run("request withdrawal", _request)

    @classmethod
    def execute(cls, withdrawal_id) -> ServiceResult[DriverWithdrawal]:
        """
        Send a PENDING withdrawal to the payout rail.

        Rail failure marks it FAILED and rolls the claimed shipments back.
        A PROCESSING answer leaves it PROCESSING for reconciliation.
        """
        try:
            with DistributedLock(
                lock_key("withdrawal", withdrawal_id),
                ttl=WITHDRAWAL_LOCK_TTL,
                timeout=WITHDRAWAL_LOCK_TIMEOUT,
            ):
                # Phase 1: PENDING -> PROCESSING, committed before the rail call
                with transaction.atomic():
                    withdrawal = cls._lock(DriverWithdrawal, withdrawal_id)
                    if withdrawal.status != WithdrawalStatus.PENDING:
                        return ServiceResult.success(withdrawal)
                    withdrawal.start_processing()
                    withdrawal.save(update_fields=["status", "processed_at", "updated_at"])
                    emit_withdrawal_status(withdrawal)

                # Phase 2: rail call
                rail_result = cls._send(withdrawal)

                # Phase 3: record outcome
                return ServiceResult.success(cls._record_outcome(withdrawal.id, rail_result))
        except BaseApplicationError as e:
            return cls.handle_exception(e, "execute withdrawal")

    @classmethod
    def cancel_withdrawal(cls, withdrawal_id, driver) -> ServiceResult[DriverWithdrawal]:
        """PENDING -> CANCELLED by the owning driver; claims roll back."""

        def _cancel():
            withdrawal = cls._lock(DriverWithdrawal, withdrawal_id)
            if withdrawal.driver_id != driver.pk:
                raise PermissionDeniedError(
                    "Withdrawal belongs to another driver",
                    details={"withdrawal_id": str(withdrawal.id)},
                )
            if withdrawal.status != WithdrawalStatus.PENDING:
                raise InvalidInvoiceTransition(
                    f"Cannot cancel a withdrawal in {withdrawal.status}",
                    details={
                        "withdrawal_id": str(withdrawal.id),
                        "current_status": withdrawal.status,
                        "target_status": WithdrawalStatus.CANCELLED,
                    },
                )
            withdrawal.cancel()
            withdrawal.save(update_fields=["status", "cancelled_at", "updated_at"])
            released = cls._release_claims(withdrawal)
            cls.get_logger().info(
                "Withdrawal cancelled",
                extra={"withdrawal_id": str(withdrawal.id), "released": released},
            )
            emit_withdrawal_status(withdrawal)
            return withdrawal

        return cls._run("cancel withdrawal", _cancel)

    @classmethod
    def reconcile_withdrawal(cls, withdrawal_id) -> ServiceResult[DriverWithdrawal]:
        """
        Drive an in-flight withdrawal to a terminal status.

        PENDING is executed (its queued task was lost). PROCESSING is
        re-queried by rail payout id, or replayed under the original
        idempotency key when the rail id was never recorded.
        """
        try:
            withdrawal = cls._get(DriverWithdrawal, withdrawal_id)
        except BaseApplicationError as e:
            return cls.handle_exception(e, "reconcile withdrawal")

        if withdrawal.status == WithdrawalStatus.PENDING:
            return cls.execute(withdrawal.id)
        if withdrawal.status != WithdrawalStatus.PROCESSING:
            return ServiceResult.success(withdrawal)

        if withdrawal.rail_payout_id:
            try:
                rail_result = PayoutService.get_payout_rail().fetch_status(
                    withdrawal.rail_payout_id
                )
            except PayoutRailError as e:
                return cls.handle_exception(e, "reconcile withdrawal")
        else:
            rail_result = cls._send(withdrawal)

        try:
            return ServiceResult.success(cls._record_outcome(withdrawal.id, rail_result))
        except BaseApplicationError as e:
            return cls.handle_exception(e, "reconcile withdrawal")

    @classmethod
    def apply_rail_status(
        cls, rail_payout_id: str, status: str, reason: str = ""
    ) -> DriverWithdrawal | None:
        """Apply a rail notification; None when no withdrawal carries the id."""
        withdrawal = DriverWithdrawal.objects.filter(rail_payout_id=rail_payout_id).first()
        if withdrawal is None:
            return None
        return cls._record_outcome(
            withdrawal.id,
            PayoutRailResult(payout_id=rail_payout_id, status=status, failure_reason=reason),
        )

    @staticmethod
    def in_flight(older_than):
        return DriverWithdrawal.objects.filter(
            status__in=IN_FLIGHT_WITHDRAWAL_STATUSES,
            updated_at__lte=timezone.now() - older_than,
        ).order_by("updated_at")

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _queue_execution(withdrawal_id) -> None:
        from settlement.tasks import execute_withdrawal

        execute_withdrawal.delay(str(withdrawal_id))

    @classmethod
    def _send(cls, withdrawal: DriverWithdrawal) -> PayoutRailResult:
        """Call the rail; rail errors become a FAILED result."""
        instruction = PayoutInstruction(
            amount_paise=withdrawal.amount_paise,
            destination=withdrawal.upi_id,
            reference=str(withdrawal.id),
            idempotency_key=IdempotencyKeyGenerator.generate("withdrawal", withdrawal.id),
            currency=withdrawal.currency,
            metadata={"driver_id": str(withdrawal.driver_id)},
        )
        try:
            return PayoutService.get_payout_rail().disburse(instruction)
        except PayoutRailError as e:
            logger.warning(
                "Payout rail rejected withdrawal",
                extra={
                    "withdrawal_id": str(withdrawal.id),
                    "error_code": e.error_code,
                    "is_retryable": e.is_retryable,
                },
            )
            return PayoutRailResult(
                payout_id="", status=RailStatus.FAILED, failure_reason=e.message
            )

    @classmethod
    def _record_outcome(cls, withdrawal_id, rail_result: PayoutRailResult) -> DriverWithdrawal:
        with transaction.atomic():
            withdrawal = cls._lock(DriverWithdrawal, withdrawal_id)
            if withdrawal.status not in IN_FLIGHT_WITHDRAWAL_STATUSES:
                return withdrawal

            if rail_result.status == RailStatus.SUCCEEDED:
                withdrawal.succeed(rail_result.payout_id or None)
                withdrawal.save(
                    update_fields=["status", "rail_payout_id", "completed_at", "updated_at"]
                )
                Shipment.objects.filter(
                    pk__in=withdrawal.shipment_ids,
                    driver_earnings_status=EarningsStatus.WITHDRAWN,
                ).update(
                    driver_earnings_withdrawn_at=withdrawal.completed_at,
                    version=F("version") + 1,
                    updated_at=timezone.now(),
                )
            elif rail_result.status == RailStatus.FAILED:
                withdrawal.fail(rail_result.failure_reason or "Payout rail failure")
                withdrawal.save(update_fields=["status", "failure_reason", "failed_at", "updated_at"])
                cls._release_claims(withdrawal)
            else:
                if withdrawal.status == WithdrawalStatus.PENDING:
                    withdrawal.start_processing(rail_result.payout_id or None)
                    withdrawal.save(
                        update_fields=["status", "rail_payout_id", "processed_at", "updated_at"]
                    )
                elif rail_result.payout_id and not withdrawal.rail_payout_id:
                    withdrawal.rail_payout_id = rail_result.payout_id
                    withdrawal.save(update_fields=["rail_payout_id", "updated_at"])
                return withdrawal

            logger.info(
                f"Withdrawal {withdrawal.status.lower()}",
                extra={
                    "withdrawal_id": str(withdrawal.id),
                    "driver_id": str(withdrawal.driver_id),
                    "amount_paise": withdrawal.amount_paise,
                    "rail_payout_id": withdrawal.rail_payout_id,
                },
            )
            emit_withdrawal_status(withdrawal)
            return withdrawal

    @staticmethod
    def _release_claims(withdrawal: DriverWithdrawal) -> int:
        """Hand the withdrawal's shipments back to AVAILABLE."""
        return Shipment.objects.filter(
            pk__in=withdrawal.shipment_ids,
            driver_earnings_status=EarningsStatus.WITHDRAWN,
            driver_earnings_withdrawn_at__isnull=True,
        ).update(
            driver_earnings_status=EarningsStatus.AVAILABLE,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )

"""
Tests for WithdrawalService.

Test Organization:
    - TestRequestWithdrawal: validation and oldest-first claims
    - TestExecute: rail outcomes and claim rollback
    - TestCancel: driver cancellation of PENDING withdrawals
    - TestReconcile: withdrawals left in flight

Requests queue execution on commit. Tests that only look at the request
leave the withdrawal PENDING; tests that need the rail run the commit
callbacks or call execute() directly.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from authentication.tests.factories import DriverFactory
from settlement.adapters import IdempotencyKeyGenerator, RailStatus
from settlement.models import DriverWithdrawal
from settlement.services import PayoutService, WithdrawalService
from settlement.state_machines import WithdrawalStatus
from settlement.tests.conftest import DRIVER_SHARE_PAISE, ProcessingRail, unwrap
from settlement.tests.factories import DeliveredShipmentFactory
from shipments.models import Shipment
from shipments.states import EarningsStatus


@pytest.fixture
def earnings(driver):
    """Three delivered shipments, oldest first."""
    now = timezone.now()
    return [
        DeliveredShipmentFactory(
            assigned_driver=driver,
            driver_earnings_available_at=now - timedelta(days=days),
        )
        for days in (3, 2, 1)
    ]


def statuses(shipments):
    return [Shipment.objects.get(pk=s.pk).driver_earnings_status for s in shipments]


def reload(withdrawal) -> DriverWithdrawal:
    return DriverWithdrawal.objects.get(pk=withdrawal.pk)


@pytest.mark.django_db
class TestRequestWithdrawal:
    def test_claims_oldest_shipments_first(self, driver, earnings):
        """
        Given three AVAILABLE shipments worth Rs 3791.90 each
        When the driver asks for Rs 5000
        Then the two oldest are claimed and the withdrawal pays their full sum
        """
        withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 500000))

        assert withdrawal.status == WithdrawalStatus.PENDING
        assert withdrawal.requested_amount_paise == 500000
        assert withdrawal.amount_paise == 2 * DRIVER_SHARE_PAISE
        assert withdrawal.upi_id == driver.upi_id
        assert [row["shipment_id"] for row in withdrawal.breakdown] == [
            str(earnings[0].pk),
            str(earnings[1].pk),
        ]
        assert withdrawal.breakdown[0]["reference_id"] == earnings[0].reference_id
        assert statuses(earnings) == [
            EarningsStatus.WITHDRAWN,
            EarningsStatus.WITHDRAWN,
            EarningsStatus.AVAILABLE,
        ]
        assert WithdrawalService.available_balance(driver) == DRIVER_SHARE_PAISE

    def test_explicit_upi_id(self, driver, earnings):
        withdrawal = unwrap(
            WithdrawalService.request_withdrawal(driver, 100000, upi_id=" driver@okbank ")
        )

        assert withdrawal.upi_id == "driver@okbank"

    def test_more_than_available(self, driver, earnings):
        result = WithdrawalService.request_withdrawal(driver, 3 * DRIVER_SHARE_PAISE + 1)

        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert result.details["available_paise"] == 3 * DRIVER_SHARE_PAISE
        assert DriverWithdrawal.objects.count() == 0
        assert set(statuses(earnings)) == {EarningsStatus.AVAILABLE}

    @pytest.mark.parametrize("amount", [0, -100, None])
    def test_amount_must_be_positive(self, driver, earnings, amount):
        result = WithdrawalService.request_withdrawal(driver, amount)

        assert result.error_code == "INVALID_AMOUNT"

    def test_upi_id_required(self, driver, earnings):
        driver.upi_id = ""

        result = WithdrawalService.request_withdrawal(driver, 100000)

        assert result.error_code == "UPI_ID_REQUIRED"

    def test_customers_cannot_withdraw(self, customer):
        result = WithdrawalService.request_withdrawal(customer, 100000, upi_id="c@bank")

        assert result.error_code == "PERMISSION_DENIED"

    def test_second_request_cannot_reuse_claims(self, driver, earnings):
        WithdrawalService.request_withdrawal(driver, 3 * DRIVER_SHARE_PAISE)

        result = WithdrawalService.request_withdrawal(driver, 100000)

        assert result.error_code == "INSUFFICIENT_BALANCE"

    def test_execution_is_queued_on_commit(
        self, driver, earnings, payout_rail, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 100000))

        assert len(callbacks) == 1
        assert reload(withdrawal).status == WithdrawalStatus.SUCCESS


@pytest.mark.django_db
class TestExecute:
    @pytest.fixture
    def withdrawal(self, driver, earnings):
        return unwrap(WithdrawalService.request_withdrawal(driver, 500000))

    def test_success_stamps_claimed_shipments(self, withdrawal, earnings, payout_rail):
        done = unwrap(WithdrawalService.execute(withdrawal.pk))

        assert done.status == WithdrawalStatus.SUCCESS
        assert done.completed_at is not None
        assert done.rail_payout_id.startswith("pout_")
        claimed = [Shipment.objects.get(pk=s.pk) for s in earnings[:2]]
        assert all(s.driver_earnings_withdrawn_at == done.completed_at for s in claimed)
        assert Shipment.objects.get(pk=earnings[2].pk).driver_earnings_withdrawn_at is None

    def test_instruction(self, withdrawal, payout_rail):
        WithdrawalService.execute(withdrawal.pk)

        instruction = payout_rail.disburse.call_args.args[0]
        assert instruction.amount_paise == 2 * DRIVER_SHARE_PAISE
        assert instruction.destination == withdrawal.upi_id
        assert instruction.idempotency_key == IdempotencyKeyGenerator.generate(
            "withdrawal", withdrawal.pk
        )

    def test_rail_failure_releases_claims(self, withdrawal, earnings, rejecting_rail):
        """
        Why it matters:
            Money that never left must go back to the driver's balance,
            otherwise the earnings are stuck in WITHDRAWN forever.
        """
        failed = unwrap(WithdrawalService.execute(withdrawal.pk))

        assert failed.status == WithdrawalStatus.FAILED
        assert failed.failure_reason == "Payout rail unavailable"
        assert set(statuses(earnings)) == {EarningsStatus.AVAILABLE}

    def test_processing_answer_stays_in_flight(self, withdrawal, earnings, processing_rail):
        pending = unwrap(WithdrawalService.execute(withdrawal.pk))

        assert pending.status == WithdrawalStatus.PROCESSING
        assert pending.rail_payout_id == "pout_async_1"
        assert statuses(earnings)[:2] == [EarningsStatus.WITHDRAWN, EarningsStatus.WITHDRAWN]

    def test_executing_twice_calls_rail_once(self, withdrawal, payout_rail):
        WithdrawalService.execute(withdrawal.pk)

        again = unwrap(WithdrawalService.execute(withdrawal.pk))

        assert again.status == WithdrawalStatus.SUCCESS
        assert payout_rail.disburse.call_count == 1


@pytest.mark.django_db
class TestCancel:
    def test_cancel_releases_claims(self, driver, earnings):
        withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 100000))

        cancelled = unwrap(WithdrawalService.cancel_withdrawal(withdrawal.pk, driver))

        assert cancelled.status == WithdrawalStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert set(statuses(earnings)) == {EarningsStatus.AVAILABLE}
        assert WithdrawalService.available_balance(driver) == 3 * DRIVER_SHARE_PAISE

    def test_processing_withdrawal_cannot_be_cancelled(self, driver, earnings, processing_rail):
        withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 100000))
        WithdrawalService.execute(withdrawal.pk)

        result = WithdrawalService.cancel_withdrawal(withdrawal.pk, driver)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert reload(withdrawal).status == WithdrawalStatus.PROCESSING

    def test_other_driver(self, driver, earnings):
        withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 100000))

        result = WithdrawalService.cancel_withdrawal(withdrawal.pk, DriverFactory())

        assert result.error_code == "PERMISSION_DENIED"
        assert reload(withdrawal).status == WithdrawalStatus.PENDING


@pytest.mark.django_db
class TestReconcile:
    @pytest.fixture
    def processing_withdrawal(self, driver, earnings, processing_rail):
        withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 100000))
        return unwrap(WithdrawalService.execute(withdrawal.pk))

    def test_rail_settles_later(self, processing_withdrawal):
        done = unwrap(WithdrawalService.reconcile_withdrawal(processing_withdrawal.pk))

        assert done.status == WithdrawalStatus.SUCCESS

    def test_rail_reports_failure(self, processing_withdrawal, earnings):
        PayoutService.set_payout_rail(ProcessingRail(final_status=RailStatus.FAILED))

        failed = unwrap(WithdrawalService.reconcile_withdrawal(processing_withdrawal.pk))

        assert failed.status == WithdrawalStatus.FAILED
        assert set(statuses(earnings)) == {EarningsStatus.AVAILABLE}

    def test_lost_task_is_executed(self, driver, earnings, payout_rail):
        withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 100000))

        done = unwrap(WithdrawalService.reconcile_withdrawal(withdrawal.pk))

        assert done.status == WithdrawalStatus.SUCCESS

    def test_webhook_notice(self, processing_withdrawal):
        updated = WithdrawalService.apply_rail_status(
            processing_withdrawal.rail_payout_id, RailStatus.SUCCEEDED
        )

        assert updated.status == WithdrawalStatus.SUCCESS

    def test_unknown_rail_id(self, db):
        assert WithdrawalService.apply_rail_status("pout_nope", RailStatus.FAILED) is None

    def test_in_flight_filter(self, processing_withdrawal):
        assert list(WithdrawalService.in_flight(timedelta(0))) == [processing_withdrawal]
        assert list(WithdrawalService.in_flight(timedelta(hours=1))) == []

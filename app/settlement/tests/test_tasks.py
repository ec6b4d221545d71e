"""
Tests for settlement Celery tasks.

Tasks are called directly (synchronously). Sweeps that queue further
work have the ``delay`` of the queued task patched out.
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from core.services import ServiceResult
from settlement.models import DriverWithdrawal, Payout, PendingShipment, WebhookEvent
from settlement.state_machines import PayoutStatus, WebhookEventStatus, WithdrawalStatus
from settlement.tasks import (
    cleanup_stuck_webhooks,
    execute_withdrawal,
    process_webhook_event,
    purge_expired_pending_shipments,
    reconcile_in_flight_payouts,
    retry_failed_webhooks,
)
from settlement.tests.factories import (
    PayoutFactory,
    PendingShipmentFactory,
    WebhookEventFactory,
    WithdrawalFactory,
)


def hours_ago(hours):
    return freeze_time(timezone.now() - timedelta(hours=hours))


@pytest.fixture
def queued(mocker):
    return mocker.patch("settlement.tasks.process_webhook_event.delay")


@pytest.fixture
def dispatch(mocker):
    return mocker.patch("settlement.webhooks.handlers.dispatch_webhook")


# =============================================================================
# Webhook Processing
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    def test_processes_pending_event(self, dispatch):
        dispatch.return_value = ServiceResult.success(None)
        event = WebhookEventFactory()

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.processed_at is not None
        assert event.retry_count == 1

    def test_already_processed_event_is_skipped(self, dispatch):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_processed"
        dispatch.assert_not_called()

    def test_missing_event(self, db):
        result = process_webhook_event(str(uuid.uuid4()))

        assert result["status"] == "not_found"

    def test_handler_failure_marks_event_failed(self, dispatch):
        dispatch.return_value = ServiceResult.failure(
            "Unknown gateway order order_x", error_code="ORDER_NOT_FOUND"
        )
        event = WebhookEventFactory()

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        assert result["error_code"] == "ORDER_NOT_FOUND"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "Unknown gateway order order_x"

    def test_handler_exception_is_reraised(self, dispatch):
        dispatch.side_effect = RuntimeError("database went away")
        event = WebhookEventFactory()

        with pytest.raises(RuntimeError):
            process_webhook_event(str(event.id))

        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "RuntimeError: database went away"


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    def test_requeues_retryable_failures(self, queued):
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=2)
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=5)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        queued.assert_called_once_with(str(retryable.id))

    def test_requeues_events_that_were_never_queued(self, queued):
        with hours_ago(1):
            lost = WebhookEventFactory()
        WebhookEventFactory()

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        queued.assert_called_once_with(str(lost.id))

    def test_nothing_to_retry(self, db, queued):
        assert retry_failed_webhooks() == {"queued_count": 0}
        queued.assert_not_called()


@pytest.mark.django_db
class TestCleanupStuckWebhooks:
    def test_resets_stuck_processing(self):
        with hours_ago(1):
            stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        busy = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)

        result = cleanup_stuck_webhooks()

        assert result == {"reset_count": 1}
        assert WebhookEvent.objects.get(pk=stuck.pk).status == WebhookEventStatus.FAILED
        assert WebhookEvent.objects.get(pk=busy.pk).status == WebhookEventStatus.PROCESSING


# =============================================================================
# Withdrawals
# =============================================================================


@pytest.mark.django_db
class TestExecuteWithdrawal:
    def test_executes_pending_withdrawal(self, payout_rail):
        withdrawal = WithdrawalFactory()

        result = execute_withdrawal(str(withdrawal.id))

        assert result["status"] == WithdrawalStatus.SUCCESS
        assert DriverWithdrawal.objects.get(pk=withdrawal.pk).status == WithdrawalStatus.SUCCESS

    def test_unknown_withdrawal(self, db, payout_rail):
        result = execute_withdrawal(str(uuid.uuid4()))

        assert result["status"] == "failed"
        assert payout_rail.disburse.call_count == 0


# =============================================================================
# Sweeps
# =============================================================================


@pytest.mark.django_db
class TestPurgeExpiredPendingShipments:
    def test_deletes_expired_records(self):
        PendingShipmentFactory(expires_at=timezone.now() - timedelta(minutes=1))
        live = PendingShipmentFactory()

        result = purge_expired_pending_shipments()

        assert result == {"status": "done", "deleted_count": 1}
        assert list(PendingShipment.objects.values_list("pk", flat=True)) == [live.pk]

    def test_skipped_while_another_sweep_runs(self, redis_connection):
        PendingShipmentFactory(expires_at=timezone.now() - timedelta(minutes=1))
        redis_connection.set.return_value = False

        result = purge_expired_pending_shipments()

        assert result == {"status": "skipped", "deleted_count": 0}
        assert PendingShipment.objects.count() == 1


@pytest.mark.django_db
class TestReconcileInFlightPayouts:
    def test_settles_stale_records(self, payout_rail):
        with hours_ago(1):
            payout = PayoutFactory()
            withdrawal = WithdrawalFactory()
        fresh = PayoutFactory(invoice=payout.invoice, recipient_type="DRIVER")

        result = reconcile_in_flight_payouts()

        assert result == {
            "status": "done",
            "payouts": 1,
            "payouts_failed": 0,
            "withdrawals": 1,
            "withdrawals_failed": 0,
        }
        assert Payout.objects.get(pk=payout.pk).status == PayoutStatus.SUCCEEDED
        assert Payout.objects.get(pk=fresh.pk).status == PayoutStatus.PENDING
        assert DriverWithdrawal.objects.get(pk=withdrawal.pk).status == WithdrawalStatus.SUCCESS

    def test_rail_failures_are_counted(self, rejecting_rail):
        with hours_ago(1):
            payout = PayoutFactory()

        result = reconcile_in_flight_payouts()

        assert result["payouts_failed"] == 1
        assert Payout.objects.get(pk=payout.pk).status == PayoutStatus.FAILED

    def test_skipped_while_another_sweep_runs(self, redis_connection, payout_rail):
        with hours_ago(1):
            PayoutFactory()
        redis_connection.set.return_value = False

        assert reconcile_in_flight_payouts() == {"status": "skipped"}
        assert payout_rail.disburse.call_count == 0

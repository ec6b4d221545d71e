"""
Celery tasks for settlement.

This module provides async tasks for:
- Processing gateway webhook events
- Retrying failed webhook events and resetting stuck ones
- Executing driver withdrawals against the payout rail
- Purging expired booking records (idempotency keys)
- Reconciling payouts and withdrawals left in flight

Rail calls are never retried automatically: execute_withdrawal has no
autoretry, and the reconciliation sweep only replays instructions under
their original idempotency key.

Usage:
    from settlement.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

    # Periodic tasks run from django-celery-beat (see migrations)
    from settlement.tasks import reconcile_in_flight_payouts
    reconcile_in_flight_payouts.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from settlement.exceptions import LockAcquisitionError
from settlement.idempotency import IdempotencyStore
from settlement.locks import DistributedLock, lock_key
from settlement.models import WebhookEvent
from settlement.models.webhook_event import MAX_WEBHOOK_RETRIES
from settlement.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum records handled per sweep
BATCH_SIZE = 100

STUCK_PROCESSING_THRESHOLD_MINUTES = 30

# PENDING webhooks older than this were never queued successfully
UNQUEUED_WEBHOOK_THRESHOLD_MINUTES = 5

# Sweep lock TTL (seconds)
SWEEP_LOCK_TTL = 300


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a gateway webhook event.

    1. Loads the WebhookEvent by ID
    2. Skips it if already processed
    3. Marks it processing and dispatches to the registered handler
    4. Marks it processed or failed

    Handlers call services that run their own transactions (and payout
    rail calls outside them), so dispatch is not wrapped in one here.

    Raises:
        Exception: Re-raised to trigger Celery retry
    """
    from settlement.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save(update_fields=["status", "retry_count", "updated_at"])

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save(
            update_fields=["status", "processed_at", "error_message", "updated_at"]
        )
        logger.info(
            "Webhook processed successfully",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        return {
            "status": "processed",
            "webhook_event_id": str(webhook_event_id),
            "provider_event_id": webhook_event.provider_event_id,
        }

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg)
    webhook_event.save(update_fields=["status", "error_message", "updated_at"])
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "provider_event_id": webhook_event.provider_event_id,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": error_msg,
        "error_code": result.error_code,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Re-queue FAILED webhooks below the retry ceiling, plus PENDING ones
    whose initial queueing never happened.
    """
    unqueued_before = timezone.now() - timedelta(minutes=UNQUEUED_WEBHOOK_THRESHOLD_MINUTES)
    candidates = list(
        WebhookEvent.objects.filter(
            status=WebhookEventStatus.FAILED,
            retry_count__lt=MAX_WEBHOOK_RETRIES,
        ).order_by("created_at")[:BATCH_SIZE]
    ) + list(
        WebhookEvent.objects.filter(
            status=WebhookEventStatus.PENDING,
            created_at__lt=unqueued_before,
        ).order_by("created_at")[:BATCH_SIZE]
    )

    queued_count = 0
    for webhook in candidates:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "provider_event_id": webhook.provider_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    if queued_count:
        logger.info(f"Queued {queued_count} webhooks for retry")
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """Reset webhooks stuck in PROCESSING (worker crash) to FAILED."""
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )[:BATCH_SIZE]

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save(update_fields=["status", "error_message", "updated_at"])
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "provider_event_id": webhook.provider_event_id,
                "stuck_since": webhook.updated_at.isoformat(),
            },
        )

    return {"reset_count": reset_count}


# =============================================================================
# Withdrawals
# =============================================================================


@shared_task(bind=True, acks_late=True)
def execute_withdrawal(self, withdrawal_id: str) -> dict:
    """Send one PENDING withdrawal to the payout rail."""
    from settlement.services import WithdrawalService

    result = WithdrawalService.execute(withdrawal_id)
    if not result.success:
        logger.warning(
            "Withdrawal execution did not complete",
            extra={"withdrawal_id": withdrawal_id, "error_code": result.error_code},
        )
        return {"status": "failed", "withdrawal_id": withdrawal_id, "error_code": result.error_code}
    return {"status": result.data.status, "withdrawal_id": withdrawal_id}


# =============================================================================
# Periodic Sweeps
# =============================================================================


@shared_task
def purge_expired_pending_shipments() -> dict:
    """Delete expired booking records; skipped while another sweep runs."""
    try:
        with DistributedLock(
            lock_key("sweep", "pending-shipments"), ttl=SWEEP_LOCK_TTL, blocking=False
        ):
            deleted = IdempotencyStore.purge_expired(batch_size=BATCH_SIZE)
    except LockAcquisitionError:
        logger.info("Pending shipment purge already running, skipping")
        return {"status": "skipped", "deleted_count": 0}

    return {"status": "done", "deleted_count": deleted}


@shared_task
def reconcile_in_flight_payouts() -> dict:
    """
    Drive PENDING payouts and PENDING/PROCESSING withdrawals older than
    SETTLEMENT_RECONCILE_AFTER_MINUTES to a terminal status.
    """
    from settlement.services import PayoutService, WithdrawalService

    older_than = timedelta(minutes=settings.SETTLEMENT_RECONCILE_AFTER_MINUTES)
    try:
        with DistributedLock(
            lock_key("sweep", "reconcile"), ttl=SWEEP_LOCK_TTL, blocking=False
        ):
            payouts = [
                PayoutService.reconcile_payout(payout_id)
                for payout_id in PayoutService.stale_pending(older_than).values_list(
                    "id", flat=True
                )[:BATCH_SIZE]
            ]
            withdrawals = [
                WithdrawalService.reconcile_withdrawal(withdrawal_id)
                for withdrawal_id in WithdrawalService.in_flight(older_than).values_list(
                    "id", flat=True
                )[:BATCH_SIZE]
            ]
    except LockAcquisitionError:
        logger.info("Reconciliation already running, skipping")
        return {"status": "skipped"}

    summary = {
        "status": "done",
        "payouts": len(payouts),
        "payouts_failed": sum(1 for r in payouts if not r.success),
        "withdrawals": len(withdrawals),
        "withdrawals_failed": sum(1 for r in withdrawals if not r.success),
    }
    if payouts or withdrawals:
        logger.info("Reconciliation sweep complete", extra=summary)
    return summary

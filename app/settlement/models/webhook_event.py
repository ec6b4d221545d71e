"""
WebhookEvent model for payment gateway webhook tracking.

Every verified webhook is stored once, keyed by the provider event id, so
redeliveries are recognized and failed processing can be retried.

Usage:
    event, created = WebhookEvent.objects.get_or_create(
        provider_event_id="evt_123",
        defaults={"event_type": "payment.captured", "payload": body},
    )
    if not created and event.is_processed:
        return HttpResponse(status=200)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from settlement.state_machines import WebhookEventStatus

MAX_WEBHOOK_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Processing Flow:
        1. Verify the gateway signature on the raw body
        2. get_or_create by provider_event_id
        3. Already PROCESSED -> 200 (duplicate)
        4. Queue process_webhook_event -> PROCESSING -> PROCESSED / FAILED
        5. FAILED events are re-queued by retry_failed_webhooks
    """

    provider_event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100, db_index=True)
    payload = models.JSONField()

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
            models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return self.status == WebhookEventStatus.FAILED and self.retry_count < MAX_WEBHOOK_RETRIES

    @property
    def entity(self) -> dict:
        """The gateway entity the event is about (payment, refund or payout)."""
        payload = self.payload.get("payload") or {}
        for name in ("payment", "payout", "refund"):
            entity = (payload.get(name) or {}).get("entity")
            if entity:
                return entity
        return (self.payload.get("data") or {}).get("object") or {}

    # Callers save after each of these

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

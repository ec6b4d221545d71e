"""
PendingShipment: the idempotency record behind "create order -> pay ->
materialize shipment".

One row per gateway order id (unique). The serialized booking payload
waits here until the payment is confirmed; the row then points at the
shipment it produced. Rows expire after
``SETTLEMENT_PENDING_ORDER_TTL_HOURS`` and are purged by a periodic sweep.

Access goes through settlement.idempotency.IdempotencyStore.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from settlement.state_machines import PendingShipmentStatus


class PendingShipment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Fields:
        order_id: Gateway order id (idempotency key)
        customer: Booking customer
        payload: Serialized draft shipment (pricing and payout breakdowns included)
        amount_paise: Amount the order was created for
        status: PENDING, COMPLETED or FAILED
        shipment: Materialized shipment once COMPLETED
        expires_at: Purge time
    """

    order_id = models.CharField(max_length=100, unique=True)
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="pending_shipments",
    )
    payload = models.JSONField(default=dict)
    amount_paise = models.PositiveBigIntegerField()
    status = models.CharField(
        max_length=20,
        choices=PendingShipmentStatus.choices,
        default=PendingShipmentStatus.PENDING,
        db_index=True,
    )
    shipment = models.OneToOneField(
        "shipments.Shipment",
        on_delete=models.SET_NULL,
        related_name="pending_record",
        null=True,
        blank=True,
    )
    provider_payment_id = models.CharField(max_length=100, blank=True)
    failure_reason = models.TextField(blank=True)
    expires_at = models.DateTimeField(db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"PendingShipment({self.order_id}, {self.status})"

    @property
    def is_expired(self) -> bool:
        return timezone.now() >= self.expires_at

    @property
    def is_terminal(self) -> bool:
        return self.status != PendingShipmentStatus.PENDING

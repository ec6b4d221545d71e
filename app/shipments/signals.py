"""
Signals emitted by the shipment state machine.

Signals:
    shipment_status_changed: Sent after commit whenever a shipment changes
        physical status (or its DELAYED overlay).

Receivers live outside this app (notifications, analytics). They get:
    shipment_id, reference_id, status, previous_status, is_delayed, timestamp

Usage:
    from django.dispatch import receiver
    from shipments.signals import shipment_status_changed

    @receiver(shipment_status_changed)
    def notify_customer(sender, shipment_id, status, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.dispatch import Signal
from django.utils import timezone

logger = logging.getLogger(__name__)

shipment_status_changed = Signal()


def emit_status_changed(shipment, previous_status: str) -> None:
    """Queue shipment_status_changed for after the current transaction commits."""
    payload = {
        "shipment_id": str(shipment.id),
        "reference_id": shipment.reference_id,
        "status": shipment.status,
        "previous_status": previous_status,
        "is_delayed": shipment.is_delayed,
        "timestamp": timezone.now().isoformat(),
    }

    def _send():
        logger.debug("shipment_status_changed", extra=payload)
        shipment_status_changed.send_robust(sender=shipment.__class__, **payload)

    transaction.on_commit(_send)

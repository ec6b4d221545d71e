"""
Signals emitted by the settlement core.

All are sent after the surrounding transaction commits, so receivers
never observe a state that was rolled back.

Signals:
    payment_status_changed: payment_id, invoice_id, shipment_id, kind, status
    payout_status_changed: payout_id, invoice_id, shipment_id, recipient_type, status
    withdrawal_status_changed: withdrawal_id, driver_id, status, amount_paise

Every payload also carries ``timestamp`` (ISO 8601).

Usage:
    from django.dispatch import receiver
    from settlement.signals import payout_status_changed

    @receiver(payout_status_changed)
    def alert_on_failure(sender, payout_id, status, **kwargs):
        if status == "FAILED":
            ...
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.dispatch import Signal
from django.utils import timezone

logger = logging.getLogger(__name__)

payment_status_changed = Signal()
payout_status_changed = Signal()
withdrawal_status_changed = Signal()


def _send_on_commit(signal: Signal, sender, payload: dict) -> None:
    payload = {**payload, "timestamp": timezone.now().isoformat()}

    def _send():
        logger.debug("Sending settlement signal", extra=payload)
        signal.send_robust(sender=sender, **payload)

    transaction.on_commit(_send)


def emit_payment_status(payment) -> None:
    _send_on_commit(
        payment_status_changed,
        payment.__class__,
        {
            "payment_id": str(payment.id),
            "invoice_id": str(payment.invoice_id),
            "shipment_id": str(payment.invoice.shipment_id),
            "kind": payment.kind,
            "status": payment.status,
        },
    )


def emit_payout_status(payout) -> None:
    _send_on_commit(
        payout_status_changed,
        payout.__class__,
        {
            "payout_id": str(payout.id),
            "invoice_id": str(payout.invoice_id),
            "shipment_id": str(payout.invoice.shipment_id),
            "recipient_type": payout.recipient_type,
            "status": payout.status,
        },
    )


def emit_withdrawal_status(withdrawal) -> None:
    _send_on_commit(
        withdrawal_status_changed,
        withdrawal.__class__,
        {
            "withdrawal_id": str(withdrawal.id),
            "driver_id": str(withdrawal.driver_id),
            "status": withdrawal.status,
            "amount_paise": withdrawal.amount_paise,
        },
    )

"""
Idempotency key store for order-based booking.

Maps an external gateway order id to at most one in-flight booking:

    put(key, payload)        -> PENDING record (insert; the key is unique)
    get(key)                 -> record in PENDING, COMPLETED or FAILED
    complete(key, shipment)  -> COMPLETED, remembers the shipment
    fail(key, reason)        -> FAILED
    purge_expired()          -> delete expired records (background sweep)

Expiry is explicit: records carry ``expires_at`` and a periodic task
deletes them, so the store does not depend on storage-engine TTLs.

Backed by the PendingShipment table. complete() and fail() are
conditional updates; a COMPLETED record is never rewritten.

Usage:
    record = IdempotencyStore.put(order.id, customer, payload, amount_paise)
    ...
    record = IdempotencyStore.get(order_id, for_update=True)
    if record.status == PendingShipmentStatus.COMPLETED:
        return record.shipment
"""

from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from settlement.exceptions import InvalidInvoiceTransition
from settlement.models import PendingShipment
from settlement.state_machines import PendingShipmentStatus

logger = logging.getLogger(__name__)

PURGE_BATCH_SIZE = 100


class IdempotencyStore:
    """Explicit idempotency-key store over PendingShipment."""

    @staticmethod
    def ttl() -> timedelta:
        return timedelta(hours=settings.SETTLEMENT_PENDING_ORDER_TTL_HOURS)

    @classmethod
    def put(cls, key: str, customer, payload: dict, amount_paise: int) -> PendingShipment:
        """
        Insert a PENDING record for ``key``, or return the existing one.

        The unique order id decides between concurrent callers.
        """
        try:
            with transaction.atomic():
                record = PendingShipment.objects.create(
                    order_id=key,
                    customer=customer,
                    payload=payload,
                    amount_paise=amount_paise,
                    expires_at=timezone.now() + cls.ttl(),
                )
        except IntegrityError:
            record = PendingShipment.objects.get(order_id=key)
            logger.info("Idempotency key already stored", extra={"order_id": key})
            return record

        logger.info(
            "Idempotency key stored",
            extra={"order_id": key, "amount_paise": amount_paise},
        )
        return record

    @staticmethod
    def get(key: str, for_update: bool = False) -> PendingShipment | None:
        queryset = PendingShipment.objects.select_related("shipment")
        if for_update:
            queryset = queryset.select_for_update(of=("self",))
        return queryset.filter(order_id=key).first()

    @staticmethod
    def complete(key: str, shipment, provider_payment_id: str = "") -> None:
        """
        Mark ``key`` COMPLETED with the shipment it produced.

        A FAILED record may still complete: a later attempt on the same
        order can capture after an earlier one failed.

        Raises:
            InvalidInvoiceTransition: The record was already COMPLETED
        """
        updated = PendingShipment.objects.filter(
            order_id=key,
            status__in=[PendingShipmentStatus.PENDING, PendingShipmentStatus.FAILED],
        ).update(
            status=PendingShipmentStatus.COMPLETED,
            shipment=shipment,
            provider_payment_id=provider_payment_id,
            completed_at=timezone.now(),
            updated_at=timezone.now(),
        )
        if not updated:
            raise InvalidInvoiceTransition(
                "Booking record was already completed",
                details={"order_id": key},
            )

    @staticmethod
    def fail(key: str, reason: str, provider_payment_id: str = "") -> bool:
        """Mark a PENDING record FAILED. Returns False if it was terminal."""
        updated = PendingShipment.objects.filter(
            order_id=key, status=PendingShipmentStatus.PENDING
        ).update(
            status=PendingShipmentStatus.FAILED,
            failure_reason=reason,
            provider_payment_id=provider_payment_id,
            updated_at=timezone.now(),
        )
        return bool(updated)

    @staticmethod
    def purge_expired(batch_size: int = PURGE_BATCH_SIZE) -> int:
        """
        Delete expired records in batches.

        Completed records are safe to drop: the shipment keeps the order id
        in ``gateway_order_id``, which still de-duplicates late replays.
        """
        total = 0
        while True:
            ids = list(
                PendingShipment.objects.filter(expires_at__lte=timezone.now())
                .values_list("id", flat=True)[:batch_size]
            )
            if not ids:
                break
            deleted, _ = PendingShipment.objects.filter(id__in=ids).delete()
            total += deleted
        if total:
            logger.info("Purged expired booking records", extra={"count": total})
        return total

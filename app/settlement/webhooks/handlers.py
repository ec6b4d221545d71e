"""
Webhook event handlers for payment gateway and payout rail events.

Handlers are registered per event type and funnel into the same
idempotent service entry points as the client-facing API, so a webhook
racing a client confirmation (or arriving twice) has exactly one effect.

    payment.captured / payment_intent.succeeded -> confirm_payment
    payment.failed                              -> record_payment_failure
    payout.processed                            -> payout / withdrawal SUCCEEDED
    payout.failed / payout.reversed             -> payout / withdrawal FAILED

Usage:
    from settlement.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("refund.processed")
    def handle_refund_processed(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult
from settlement.adapters import RailStatus
from settlement.models import WebhookEvent
from settlement.services import PayoutService, SettlementCoordinator, WithdrawalService

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """Decorator registering ``func`` as the handler for ``event_type``."""

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to its handler.

    Unknown event types are acknowledged with success and ignored.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"provider_event_id": webhook_event.provider_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"provider_event_id": webhook_event.provider_event_id},
    )
    return handler(webhook_event)


def _missing(webhook_event: WebhookEvent, field: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: could not extract {field}",
        extra={"provider_event_id": webhook_event.provider_event_id},
    )
    return ServiceResult.failure(
        f"Missing {field} in event payload",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


# =============================================================================
# Payment Handlers
# =============================================================================


@register_handler("payment.captured")
@register_handler("payment_intent.succeeded")
def handle_payment_captured(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Captured payment: same entry point as the client confirmation.

    The body signature was verified on receipt, so no payment signature is
    required here.
    """
    entity = webhook_event.entity
    payment_id = entity.get("id")
    order_id = entity.get("order_id") or (entity.get("metadata") or {}).get("order_id")
    if not payment_id:
        return _missing(webhook_event, "payment id")
    if not order_id:
        return _missing(webhook_event, "order id")

    return SettlementCoordinator.confirm_payment(order_id, payment_id, verified=True)


@register_handler("payment.failed")
def handle_payment_failed(webhook_event: WebhookEvent) -> ServiceResult:
    entity = webhook_event.entity
    order_id = entity.get("order_id") or (entity.get("metadata") or {}).get("order_id")
    if not order_id:
        return _missing(webhook_event, "order id")

    reason = entity.get("error_description") or entity.get("error_reason") or "Payment failed"
    return SettlementCoordinator.record_payment_failure(
        order_id, provider_payment_id=entity.get("id") or "", reason=reason
    )


# =============================================================================
# Payout Handlers
# =============================================================================


def _apply_payout_status(webhook_event: WebhookEvent, status: str) -> ServiceResult:
    entity = webhook_event.entity
    rail_payout_id = entity.get("id")
    if not rail_payout_id:
        return _missing(webhook_event, "payout id")

    reason = ""
    if status == RailStatus.FAILED:
        reason = (
            entity.get("failure_reason")
            or (entity.get("status_details") or {}).get("description")
            or webhook_event.event_type
        )

    record = PayoutService.apply_rail_status(rail_payout_id, status, reason)
    if record is None:
        record = WithdrawalService.apply_rail_status(rail_payout_id, status, reason)
    if record is None:
        # The rail can notify before our phase 3 stored its id; reconciliation
        # picks the record up by replaying the instruction.
        logger.warning(
            "Payout notification for unknown rail payout",
            extra={
                "provider_event_id": webhook_event.provider_event_id,
                "rail_payout_id": rail_payout_id,
            },
        )
    return ServiceResult.success(record)


@register_handler("payout.processed")
def handle_payout_processed(webhook_event: WebhookEvent) -> ServiceResult:
    return _apply_payout_status(webhook_event, RailStatus.SUCCEEDED)


@register_handler("payout.failed")
@register_handler("payout.reversed")
def handle_payout_failed(webhook_event: WebhookEvent) -> ServiceResult:
    return _apply_payout_status(webhook_event, RailStatus.FAILED)

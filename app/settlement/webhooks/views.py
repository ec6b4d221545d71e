"""
Webhook endpoint for the payment gateway and payout rail.

The view:
1. Verifies X-Gateway-Signature (HMAC-SHA256 of the raw body)
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Queues the event for async processing
4. Returns immediately

Nothing in the body is trusted before the signature verifies.
"""

from __future__ import annotations

import hashlib
import json
import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from kombu.exceptions import OperationalError

from settlement.models import WebhookEvent
from settlement.services import SettlementCoordinator
from settlement.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Gateway-Signature"
EVENT_ID_HEADER = "X-Gateway-Event-Id"


@csrf_exempt
@require_POST
def gateway_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue gateway webhook events.

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Missing or invalid signature, or unreadable payload
    """
    payload = request.body
    signature = request.headers.get(SIGNATURE_HEADER, "")

    if not signature:
        logger.warning("Webhook received without signature header")
        return HttpResponse("Missing signature", status=400)

    # Step 1: Verify signature
    if not SettlementCoordinator.get_gateway().verify_webhook_signature(payload, signature):
        logger.warning("Webhook signature verification failed")
        return HttpResponse("Invalid signature", status=400)

    try:
        event_data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Webhook body is not valid JSON")
        return HttpResponse("Invalid payload", status=400)

    if not isinstance(event_data, dict):
        logger.warning("Webhook body is not a JSON object")
        return HttpResponse("Invalid payload", status=400)

    event_type = event_data.get("event") or event_data.get("type")
    if not event_type:
        logger.warning("Webhook missing event type")
        return HttpResponse("Invalid event", status=400)

    provider_event_id = (
        request.headers.get(EVENT_ID_HEADER)
        or event_data.get("id")
        or hashlib.sha256(payload).hexdigest()
    )

    logger.info(
        f"Received gateway webhook: {event_type}",
        extra={"provider_event_id": provider_event_id, "event_type": event_type},
    )

    # Step 2: Create/get WebhookEvent (idempotent)
    webhook_event, created = WebhookEvent.objects.get_or_create(
        provider_event_id=provider_event_id,
        defaults={
            "event_type": event_type,
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )

    # Step 3: If already processed, return success
    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"provider_event_id": provider_event_id},
        )
        return HttpResponse("Already processed", status=200)

    # Step 4: Queue for async processing
    from settlement.tasks import process_webhook_event

    try:
        process_webhook_event.delay(str(webhook_event.id))
    except OperationalError:
        # Stored as PENDING; redelivery or retry_failed_webhooks picks it up
        logger.error(
            "Failed to queue webhook",
            extra={"provider_event_id": provider_event_id},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)

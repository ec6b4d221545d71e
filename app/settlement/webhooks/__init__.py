"""
Webhook handling for payment gateway and payout rail events.

Webhooks are verified, stored idempotently and processed asynchronously
via Celery tasks.
"""

from settlement.webhooks.handlers import dispatch_webhook, register_handler
from settlement.webhooks.views import gateway_webhook

__all__ = [
    "dispatch_webhook",
    "gateway_webhook",
    "register_handler",
]

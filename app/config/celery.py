"""
Celery application for the settlement workers.

Queued work:
    - settlement.tasks.process_webhook_event (enqueued by the webhook view)
    - settlement.tasks.execute_withdrawal (enqueued on commit of a request)

Periodic sweeps (webhook retries, stuck-event reset, expired booking purge,
payout and withdrawal reconciliation) are stored in django-celery-beat's
DatabaseScheduler and seeded by a settlement data migration.

Broker and result backend are Redis; every CELERY_* Django setting is
picked up below.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("settlement")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

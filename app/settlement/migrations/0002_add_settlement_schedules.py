"""
Add celery-beat schedules for the settlement sweeps.

- Retry failed gateway webhooks (every 5 minutes)
- Reset webhooks stuck in processing (every 15 minutes)
- Purge expired booking records (every 15 minutes)
- Reconcile in-flight payouts and withdrawals (every 10 minutes)
"""

from django.db import migrations

SCHEDULES = [
    (
        "Retry Failed Gateway Webhooks",
        "settlement.tasks.retry_failed_webhooks",
        5,
        "Re-queues FAILED webhook events below the retry ceiling and PENDING "
        "events that were never queued.",
    ),
    (
        "Reset Stuck Gateway Webhooks",
        "settlement.tasks.cleanup_stuck_webhooks",
        15,
        "Resets webhook events left in PROCESSING by a crashed worker to FAILED.",
    ),
    (
        "Purge Expired Pending Shipments",
        "settlement.tasks.purge_expired_pending_shipments",
        15,
        "Deletes expired booking idempotency records in batches.",
    ),
    (
        "Reconcile In-Flight Payouts",
        "settlement.tasks.reconcile_in_flight_payouts",
        10,
        "Re-queries the payout rail for stale PENDING payouts and "
        "PENDING/PROCESSING withdrawals.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the settlement sweeps."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, every, description in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=every,
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[name for name, *_ in SCHEDULES]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlement", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]

"""
Add celery-beat schedules for the escrow workers.

- Deadline sweep: every 15 minutes, refunds escrows past deadline + grace
- Deadline reminders: hourly, halfway reminders to recipients
- Unsettled response reconciliation: every 15 minutes
- Daily reconciliation summary: once a day
- Stuck webhook cleanup: every 30 minutes
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Sweep Expired Escrows",
        "task": "escrow.workers.deadline_sweeper.sweep_expired_escrows",
        "every": 15,
        "period": "minutes",
        "description": "Refunds held escrows whose deadline plus grace has passed.",
    },
    {
        "name": "Send Deadline Reminders",
        "task": "escrow.workers.deadline_sweeper.send_deadline_reminders",
        "every": 1,
        "period": "hours",
        "description": "Reminds recipients once half of the response window is gone.",
    },
    {
        "name": "Reconcile Unsettled Responses",
        "task": "escrow.workers.reconciliation.reconcile_unsettled_responses",
        "every": 15,
        "period": "minutes",
        "description": "Releases escrows whose response was recorded but never settled.",
    },
    {
        "name": "Daily Escrow Reconciliation",
        "task": "escrow.workers.reconciliation.daily_reconciliation",
        "every": 1,
        "period": "days",
        "description": "Summarises yesterday's escrows and flags anomalies.",
    },
    {
        "name": "Cleanup Stuck Webhooks",
        "task": "escrow.tasks.cleanup_stuck_webhooks",
        "every": 30,
        "period": "minutes",
        "description": "Marks webhook events stuck in processing as failed.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the escrow workers."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period=entry["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]

"""
Celery configuration for the Django application.

Celery runs the escrow background work:
- Stripe webhook event processing
- Deadline sweep and halfway reminders (celery-beat)
- Reconciliation jobs (celery-beat)
- Notification email delivery

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps; periodic schedules
live in the database (django-celery-beat) and are created by migrations.

Usage:
    from escrow.workers import sweep_expired_escrows

    sweep_expired_escrows.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery looks for a tasks.py module in each installed app
app.autodiscover_tasks()

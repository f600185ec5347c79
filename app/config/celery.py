"""
Celery configuration for the Django application.

Celery runs the settlement background work:
- Webhook processing queued by the gateway webhook endpoint
- Periodic settlement sweeps (unpaid expiry, overdue, grace refunds)
- Refund and webhook retries

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps; the beat schedule
lives in CELERY_BEAT_SCHEDULE in settings.py.

Usage:
    from payments.tasks import process_webhook_event

    process_webhook_event.delay(str(event.id))
"""

import logging
import os

from celery import Celery
from celery.signals import worker_ready

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

logger = logging.getLogger(__name__)

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()


@worker_ready.connect
def run_sweeps_on_startup(sender=None, **kwargs):
    """Sweep once at worker start; deadlines may have passed while no worker ran."""
    from payments.tasks import run_settlement_sweeps

    logger.info("Worker ready; queueing startup settlement sweep")
    run_settlement_sweeps.delay()

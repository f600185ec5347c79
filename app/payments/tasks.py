"""
Celery tasks for webhook processing.

Usage:
    from payments.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

Settlement sweeps and the refund and payout retries live in
payments.workers; they are re-exported here so celery autodiscovery
registers them.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.db.models import Q
from django.utils import timezone

from payments.models import WebhookEvent
from payments.models.webhook_event import WEBHOOK_MAX_RETRIES
from payments.state_machines import WebhookEventStatus
from payments.workers import retry_pending_refunds, retry_stalled_payouts, run_settlement_sweeps

logger = logging.getLogger(__name__)

# PENDING events older than this were never queued successfully
UNQUEUED_THRESHOLD_MINUTES = 10

__all__ = [
    "process_webhook_event",
    "retry_failed_webhooks",
    "retry_pending_refunds",
    "retry_stalled_payouts",
    "run_settlement_sweeps",
]


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": WEBHOOK_MAX_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored webhook event.

    Handler failures mark the event FAILED for retry_failed_webhooks.
    Unexpected exceptions also mark it FAILED and are re-raised so
    Celery retries with backoff.

    Returns:
        Dict with status: processed, already_processed, handler_failed
        or not_found
    """
    from payments.webhooks.handlers import dispatch_webhook

    try:
        webhook_event = WebhookEvent.objects.get(id=UUID(str(webhook_event_id)))
    except (WebhookEvent.DoesNotExist, ValueError):
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        return {"status": "already_processed", "webhook_event_id": str(webhook_event.id)}

    webhook_event.mark_processing()
    webhook_event.save()

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={"event_id": webhook_event.event_id, "event_type": webhook_event.event_type},
        )
        raise

    if result:
        webhook_event.mark_processed()
        webhook_event.save()
        logger.info(
            "Webhook processed: %s",
            webhook_event.event_type,
            extra={"event_id": webhook_event.event_id},
        )
        return {"status": "processed", "webhook_event_id": str(webhook_event.id)}

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg)
    webhook_event.save()
    logger.warning(
        "Webhook handler failed: %s",
        error_msg,
        extra={"event_id": webhook_event.event_id, "error_code": result.error_code},
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event.id),
        "error": error_msg,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Re-queue failed webhook events below the retry limit, and pending
    events that were never queued.
    """
    unqueued_before = timezone.now() - timedelta(minutes=UNQUEUED_THRESHOLD_MINUTES)
    webhooks = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.FAILED, retry_count__lt=WEBHOOK_MAX_RETRIES)
        | Q(status=WebhookEventStatus.PENDING, created_at__lt=unqueued_before)
    ).order_by("created_at")[:100]

    queued_count = 0
    for webhook in webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1

    logger.info(
        "Queued %s webhooks for retry",
        queued_count,
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}

"""
Re-drives refunds that have not reached the gateway.

Three kinds of refund are picked up:

- FAILED with a transient gateway error, once ``next_retry_at`` is due
  (RefundService schedules it with exponential backoff)
- INITIATED and never processed, e.g. the process call after the ledger
  commit crashed
- PROCESSING with no gateway refund id, the claim stalled before the
  outcome was recorded; it is resumed with the same idempotency key

The last two wait for ``REFUND_STALL_MINUTES`` so that a call in flight
is not raced.
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.db.models import F, Q, QuerySet
from django.utils import timezone

from payments.models import Refund
from payments.models.refund import stall_window
from payments.services import RefundService
from payments.state_machines import RefundStatus

logger = logging.getLogger(__name__)

BATCH_SIZE = 50


def refunds_due(now=None) -> QuerySet[Refund]:
    now = now or timezone.now()
    stalled_before = now - stall_window()
    return Refund.objects.filter(
        Q(
            status=RefundStatus.FAILED,
            retry_count__lt=F("max_retries"),
            next_retry_at__lte=now,
        )
        | Q(status=RefundStatus.INITIATED, updated_at__lte=stalled_before)
        | Q(
            status=RefundStatus.PROCESSING,
            gateway_refund_id__isnull=True,
            updated_at__lte=stalled_before,
        )
    ).order_by("updated_at")


@shared_task(bind=True, acks_late=True)
def retry_pending_refunds(self) -> dict:
    """
    Process refunds that are due for a retry or stalled.

    Returns:
        Dict with retried, succeeded and failed counts
    """
    summary = {"retried": 0, "succeeded": 0, "failed": 0}
    for refund in refunds_due()[:BATCH_SIZE]:
        summary["retried"] += 1
        try:
            result = RefundService.process(refund)
        except Exception:
            summary["failed"] += 1
            logger.exception(
                "Refund retry crashed for %s",
                refund.id,
                extra={"refund_id": str(refund.id), "order_id": str(refund.order_id)},
            )
            continue
        if result:
            summary["succeeded"] += 1
        else:
            summary["failed"] += 1

    logger.info("Refund retry run complete: %s", summary, extra=summary)
    return summary

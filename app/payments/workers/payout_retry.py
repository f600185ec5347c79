"""
Re-drives editor payouts that never reached the gateway.

EscrowLedger.release commits the order as RELEASED with payout_status
PROCESSING before it calls the gateway. If the process dies in between,
the order is left with no ``gateway_payout_id``. This task finds such
orders once they are older than ``PAYOUT_STALL_MINUTES`` and creates the
transfer with the same per-order idempotency key.

Usage:
    from payments.workers import retry_stalled_payouts

    retry_stalled_payouts.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import QuerySet
from django.utils import timezone

from orders.models import Order
from orders.states import PayoutStatus, SettlementPhase
from payments.services import EscrowLedger

logger = logging.getLogger(__name__)

# Maximum orders per run
BATCH_SIZE = 100


def stalled_payout_orders(now=None) -> QuerySet[Order]:
    now = now or timezone.now()
    return Order.objects.filter(
        phase=SettlementPhase.RELEASED,
        payout_status=PayoutStatus.PROCESSING,
        gateway_payout_id__isnull=True,
        updated_at__lte=now - timedelta(minutes=settings.PAYOUT_STALL_MINUTES),
    ).order_by("updated_at")


@shared_task(bind=True, acks_late=True)
def retry_stalled_payouts(self) -> dict:
    """
    Create transfers for released orders whose payout was never recorded.

    Returns:
        Dict with resumed, skipped and failed counts
    """
    now = timezone.now()
    stalled_before = now - timedelta(minutes=settings.PAYOUT_STALL_MINUTES)
    orders = stalled_payout_orders(now).select_related("editor")[:BATCH_SIZE]

    summary = {"resumed": 0, "skipped": 0, "failed": 0}
    for order in orders:
        try:
            resumed = EscrowLedger.resume_payout(order, stalled_before)
        except Exception:
            summary["failed"] += 1
            logger.exception(
                "Payout resume crashed for order %s",
                order.order_number,
                extra={"order_id": str(order.id)},
            )
            continue
        summary["resumed" if resumed else "skipped"] += 1

    logger.info("Stalled payout run complete: %s", summary, extra=summary)
    return summary

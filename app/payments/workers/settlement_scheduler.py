"""
Settlement scheduler: time-driven transitions no user action triggers.

run_settlement_sweeps runs hourly from celery-beat and once when a
worker starts. Its three sweeps are independent and safe to re-run:

1. expire_unpaid_orders: AWAITING_PAYMENT past its payment window is
   cancelled. No money was held, so nothing is refunded.
2. mark_overdue_orders: funded work past its deadline enters the grace
   period and loses chat.
3. refund_grace_expired_orders: overdue work not submitted by the end
   of the grace period is refunded in full.

Release is never time-driven; only the client's confirmation releases.
Each order is handled on its own: a failure is logged and the order is
picked up again on the next run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from celery import shared_task
from django.db.models import QuerySet
from django.utils import timezone

from orders.models import Order
from orders.states import OrderStatus, SettlementPhase
from payments.exceptions import AlreadySettledError, StaleTransitionError
from payments.services import EscrowLedger, SettlementNotifier
from payments.state_machines import RefundReason

logger = logging.getLogger(__name__)

# Maximum orders handled per sweep per run
BATCH_SIZE = 100

PAYMENT_TIMEOUT_REASON = "payment timeout"


def _full_refund(order: Order) -> int:
    return 100


def _run_sweep(name: str, orders: Iterable[Order], handle: Callable[[Order], None]) -> dict:
    summary = {"processed": 0, "skipped": 0, "failed": 0}
    for order in orders:
        try:
            handle(order)
        except (StaleTransitionError, AlreadySettledError) as exc:
            # Moved by a user action or webhook since it was selected.
            summary["skipped"] += 1
            logger.info(
                "%s: skipped order %s (%s)",
                name,
                order.order_number,
                exc.error_code,
                extra={"sweep": name, "order_id": str(order.id)},
            )
        except Exception:
            summary["failed"] += 1
            logger.exception(
                "%s: failed on order %s",
                name,
                order.order_number,
                extra={"sweep": name, "order_id": str(order.id), "phase": order.phase},
            )
        else:
            summary["processed"] += 1
    return summary


# =============================================================================
# Sweeps
# =============================================================================


def expired_unpaid_orders(now=None) -> QuerySet[Order]:
    now = now or timezone.now()
    return Order.objects.filter(
        status=OrderStatus.AWAITING_PAYMENT,
        payment_expires_at__lte=now,
    ).order_by("payment_expires_at")


def expire_unpaid_orders() -> dict:
    def handle(order: Order) -> None:
        EscrowLedger.cancel_unpaid(order, reason=PAYMENT_TIMEOUT_REASON)
        SettlementNotifier.order_expired(order)

    orders = expired_unpaid_orders().select_related("client", "editor")[:BATCH_SIZE]
    return _run_sweep("expire_unpaid", orders, handle)


def overdue_candidates(now=None) -> QuerySet[Order]:
    now = now or timezone.now()
    return Order.objects.filter(
        phase=SettlementPhase.HELD,
        status__in=[OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS],
        deadline__lt=now,
    ).order_by("deadline")


def mark_overdue_orders() -> dict:
    orders = overdue_candidates().select_related("client", "editor")[:BATCH_SIZE]
    return _run_sweep("mark_overdue", orders, EscrowLedger.mark_overdue)


def grace_expired_orders(now=None) -> QuerySet[Order]:
    now = now or timezone.now()
    return (
        Order.objects.filter(phase=SettlementPhase.OVERDUE, grace_ends_at__lte=now)
        .exclude(status=OrderStatus.SUBMITTED)
        .order_by("grace_ends_at")
    )


def refund_grace_expired_orders() -> dict:
    def handle(order: Order) -> None:
        EscrowLedger.refund(order, reason=RefundReason.OVERDUE, percent_fn=_full_refund)

    orders = grace_expired_orders().select_related("client", "editor")[:BATCH_SIZE]
    return _run_sweep("refund_grace_expired", orders, handle)


# =============================================================================
# Periodic Task
# =============================================================================


@shared_task(bind=True, acks_late=True)
def run_settlement_sweeps(self) -> dict:
    """
    Run the three settlement sweeps in order.

    Returns:
        Dict keyed by sweep name with processed/skipped/failed counts
    """
    logger.info("Starting settlement sweeps")
    summary = {
        "expire_unpaid": expire_unpaid_orders(),
        "mark_overdue": mark_overdue_orders(),
        "refund_grace_expired": refund_grace_expired_orders(),
    }
    logger.info("Settlement sweeps complete: %s", summary, extra={"summary": summary})
    return summary

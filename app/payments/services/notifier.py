"""
Settlement side effects: chat system messages and notifications.

These run after the state change they describe has been written. A
failure here is logged and never undoes or blocks the settlement.
Notifications carry idempotency keys derived from the order, so a
repeated call for the same event does not notify twice.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import DatabaseError

from chat.models import SystemMessageEvent
from chat.services import OrderChatService
from notifications.models import NotificationKind
from notifications.services import NotificationService

if TYPE_CHECKING:
    from authentication.models import User
    from orders.models import Order
    from payments.models import Refund

logger = logging.getLogger(__name__)


class SettlementNotifier:
    """Fire-and-forget messages about settlement events."""

    @staticmethod
    def _post(order: Order, event: str, data: dict | None = None) -> None:
        try:
            OrderChatService.post_system_message(order, event, data)
        except DatabaseError:
            logger.warning(
                "Could not post system message %s for order %s",
                event,
                order.id,
                exc_info=True,
                extra={"order_id": str(order.id), "event": event},
            )

    @staticmethod
    def _notify(
        order: Order,
        recipient: User,
        kind: str,
        title: str,
        body: str = "",
        data: dict | None = None,
        key_suffix: str = "",
    ) -> None:
        key = f"{kind}:{order.id}:{recipient.pk}{key_suffix}"
        try:
            NotificationService.create_notification(
                recipient=recipient,
                kind=kind,
                title=title,
                body=body,
                data={"order_id": str(order.id), "order_number": order.order_number, **(data or {})},
                source_object=order,
                idempotency_key=key,
            )
        except DatabaseError:
            logger.warning(
                "Could not notify user %s of %s",
                recipient.pk,
                kind,
                exc_info=True,
                extra={"order_id": str(order.id), "kind": kind},
            )

    @classmethod
    def _notify_both(cls, order: Order, kind: str, title: str, body: str = "", data=None) -> None:
        cls._notify(order, order.client, kind, title, body, data)
        cls._notify(order, order.editor, kind, title, body, data)

    # ==========================================================================
    # Payment
    # ==========================================================================

    @classmethod
    def escrow_held(cls, order: Order) -> None:
        cls._post(
            order,
            SystemMessageEvent.ESCROW_HELD,
            {"amount": order.amount, "payment_id": order.gateway_payment_id},
        )
        cls._notify(
            order,
            order.editor,
            NotificationKind.ESCROW_HELD,
            f"Payment received for {order.order_number}",
            f"{order.amount} is held in escrow until the client confirms delivery.",
        )

    @classmethod
    def payment_failed(cls, order: Order, reason: str = "") -> None:
        cls._notify(
            order,
            order.client,
            NotificationKind.PAYMENT_FAILED,
            f"Payment failed for {order.order_number}",
            reason,
            key_suffix=f":{order.gateway_order_id}",
        )

    # ==========================================================================
    # Settlement
    # ==========================================================================

    @classmethod
    def order_completed(cls, order: Order, trigger: str) -> None:
        cls._post(
            order,
            SystemMessageEvent.ORDER_COMPLETED,
            {"editor_earning": order.editor_earning, "trigger": trigger},
        )
        cls._notify_both(
            order,
            NotificationKind.ORDER_COMPLETED,
            f"Order {order.order_number} completed",
        )

    @classmethod
    def payout_pending(cls, order: Order, reason: str) -> None:
        cls._notify(
            order,
            order.editor,
            NotificationKind.PAYOUT_PENDING,
            "Payout pending",
            f"{order.editor_earning} was added to your pending payout balance.",
            {"reason": reason},
        )

    @classmethod
    def payout_processed(cls, order: Order) -> None:
        cls._notify(
            order,
            order.editor,
            NotificationKind.PAYOUT_PROCESSED,
            "Payout sent",
            f"{order.payout_amount or order.editor_earning} is on its way to your account.",
        )

    @classmethod
    def payout_failed(cls, order: Order, reason: str = "") -> None:
        cls._notify(
            order,
            order.editor,
            NotificationKind.PAYOUT_FAILED,
            "Payout failed",
            "The amount was added to your pending payout balance.",
            {"reason": reason},
        )

    @classmethod
    def order_refunded(cls, order: Order, refund: Refund) -> None:
        cls._post(
            order,
            SystemMessageEvent.ORDER_REFUNDED,
            {
                "refund_amount": refund.refund_amount,
                "percentage": refund.refund_percentage,
                "reason": refund.reason,
            },
        )
        kind = (
            NotificationKind.ORDER_AUTO_REFUNDED
            if order.overdue_refunded
            else NotificationKind.REFUND_PROCESSED
        )
        cls._notify_both(
            order,
            kind,
            f"Order {order.order_number} refunded",
            f"{refund.refund_amount} ({refund.refund_percentage}%) is being returned to the client.",
            {"refund_id": str(refund.id)},
        )

    @classmethod
    def refund_to_wallet(cls, refund: Refund) -> None:
        order = refund.order
        cls._notify(
            order,
            refund.client,
            NotificationKind.REFUND_TO_WALLET,
            "Refund credited to your wallet",
            f"{refund.refund_amount} was added to your wallet balance.",
            {"refund_id": str(refund.id)},
        )

    # ==========================================================================
    # Scheduler & Disputes
    # ==========================================================================

    @classmethod
    def order_expired(cls, order: Order) -> None:
        cls._post(order, SystemMessageEvent.ORDER_EXPIRED, {"reason": order.cancellation_reason})
        cls._notify_both(
            order,
            NotificationKind.ORDER_EXPIRED,
            f"Order {order.order_number} expired",
            "The order was cancelled because payment was not received in time.",
        )

    @classmethod
    def order_overdue(cls, order: Order) -> None:
        grace_ends_at = order.grace_ends_at.isoformat() if order.grace_ends_at else None
        cls._post(order, SystemMessageEvent.ORDER_OVERDUE, {"grace_ends_at": grace_ends_at})
        cls._notify_both(
            order,
            NotificationKind.ORDER_OVERDUE,
            f"Order {order.order_number} is overdue",
            "The deadline has passed. Deliver before the grace period ends or the order is refunded.",
            {"grace_ends_at": grace_ends_at},
        )

    @classmethod
    def dispute_opened(cls, order: Order, raised_by: User) -> None:
        cls._post(
            order,
            SystemMessageEvent.DISPUTE_OPENED,
            {"raised_by_id": str(raised_by.pk), "reason": order.dispute_reason},
        )
        cls._notify_both(
            order,
            NotificationKind.DISPUTE_OPENED,
            f"Dispute opened on {order.order_number}",
            order.dispute_reason,
        )

    @classmethod
    def dispute_resolved(cls, order: Order, resolution: str) -> None:
        cls._post(order, SystemMessageEvent.DISPUTE_RESOLVED, {"resolution": resolution})
        cls._notify_both(
            order,
            NotificationKind.DISPUTE_RESOLVED,
            f"Dispute on {order.order_number} resolved",
            data={"resolution": resolution},
        )

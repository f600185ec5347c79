"""
Order workflow services.

OrderService owns the operations the parties perform on an order that
do not move money: creating it, accepting, starting work, submitting the
delivery, rating and extending the deadline. Anything that changes the
settlement phase is delegated to ``payments.services.EscrowLedger``.

All writes use ``Order.objects.compare_and_swap`` keyed on the phase and
status the caller read, so a sweep or webhook that moved the order in
the meantime makes the operation fail with ``ConflictError`` instead of
being overwritten.

Usage:
    from orders.services import OrderService

    order = OrderService.create_order(client=client, editor=editor, amount=1000)
    OrderService.accept(order, editor)
    OrderService.start_work(order, editor)
    delivery = OrderService.submit_delivery(order, editor, file_url="https://...")
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from django.conf import settings
from django_fsm import TransitionNotAllowed

from core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from core.services import BaseService
from orders.models import FinalDelivery, Order, Rating
from orders.states import OrderStatus, OrderType, SettlementPhase

if TYPE_CHECKING:
    from authentication.models import User


class OrderService(BaseService):
    """Workflow operations on orders."""

    @classmethod
    def _require_party(cls, order: Order, user: User, role: str) -> None:
        party_id = order.client_id if role == "client" else order.editor_id
        if user.pk != party_id:
            raise PermissionDeniedError(
                f"Only the order's {role} can perform this action",
                error_code=f"NOT_ORDER_{role.upper()}",
                details={"order_id": str(order.id)},
            )

    @classmethod
    def _save_transition(cls, order: Order, phase: str, status: str, fields: list[str]) -> None:
        if not Order.objects.compare_and_swap(order, phase=phase, status=status, fields=fields):
            raise ConflictError(
                "Order was modified concurrently; reload and retry",
                error_code="ORDER_CHANGED",
                details={"order_id": str(order.id)},
            )

    @classmethod
    def _apply(cls, order: Order, transition_name: str, *args, fields: list[str]) -> None:
        """Run a status transition in memory and persist it with compare-and-swap."""
        phase, status = order.phase, order.status
        try:
            getattr(order, transition_name)(*args)
        except TransitionNotAllowed as exc:
            raise ConflictError(
                f"Cannot {transition_name.replace('_', ' ')} an order in status {status}",
                error_code="INVALID_STATE_TRANSITION",
                details={"order_id": str(order.id), "status": status, "action": transition_name},
            ) from exc
        cls._save_transition(order, phase, status, ["status", *fields])
        cls.get_logger().info(
            "Order %s: %s (%s -> %s)",
            order.order_number,
            transition_name,
            status,
            order.status,
            extra={"order_id": str(order.id), "action": transition_name},
        )

    # ==========================================================================
    # Creation
    # ==========================================================================

    @classmethod
    def create_order(
        cls,
        *,
        client: User,
        editor: User,
        amount: int,
        order_type: str = OrderType.GIG,
        title: str = "",
        deadline: datetime | None = None,
    ) -> Order:
        """
        Create an order and snapshot the platform fee.

        Gig orders start in PENDING_PAYMENT with no payment window: only
        AWAITING_PAYMENT orders expire. Request and brief orders start in
        NEW and wait for the editor to accept.

        Raises:
            ValidationError: amount below ORDER_MINIMUM_AMOUNT, or the
                client and editor are the same user
        """
        minimum = settings.ORDER_MINIMUM_AMOUNT
        if amount < minimum:
            raise ValidationError(
                f"Order amount must be at least {minimum}",
                error_code="AMOUNT_TOO_SMALL",
                details={"amount": amount, "minimum": minimum},
            )
        if client.pk == editor.pk:
            raise ValidationError("Client and editor must differ", error_code="SAME_PARTY")

        is_gig = order_type == OrderType.GIG
        with cls.atomic():
            order = Order.objects.create(
                client=client,
                editor=editor,
                amount=amount,
                order_type=order_type,
                title=title,
                deadline=deadline,
                status=OrderStatus.PENDING_PAYMENT if is_gig else OrderStatus.NEW,
            )

        cls.get_logger().info(
            "Created order %s for %s (fee %s, earning %s)",
            order.order_number,
            order.amount,
            order.platform_fee,
            order.editor_earning,
            extra={"order_id": str(order.id), "amount": amount},
        )
        return order

    # ==========================================================================
    # Editor actions
    # ==========================================================================

    @classmethod
    def accept(cls, order: Order, editor: User) -> Order:
        """
        Editor accepts a NEW order.

        A funded gig goes straight to ACCEPTED. An unfunded request moves
        to AWAITING_PAYMENT and gets a payment window.
        """
        cls._require_party(order, editor, "editor")
        if order.phase == SettlementPhase.HELD:
            cls._apply(order, "accept", fields=[])
        else:
            cls._apply(
                order,
                "await_payment",
                settings.ORDER_PAYMENT_WINDOW_HOURS,
                fields=["payment_expires_at"],
            )
        return order

    @classmethod
    def reject(cls, order: Order, editor: User, reason: str = "") -> Order:
        """
        Editor declines a NEW order. A funded order is refunded in full.
        """
        cls._require_party(order, editor, "editor")
        if order.is_funded:
            from payments.services import EscrowLedger
            from payments.state_machines import RefundInitiator, RefundReason

            EscrowLedger.refund(
                order,
                reason=RefundReason.ORDER_REJECTED,
                reason_details=reason,
                percent_fn=lambda _order: 100,
                initiated_by=RefundInitiator.EDITOR,
            )
            return order
        cls._apply(order, "reject", fields=[])
        return order

    @classmethod
    def start_work(cls, order: Order, editor: User) -> Order:
        cls._require_party(order, editor, "editor")
        if not order.is_funded:
            raise ConflictError("Order is not funded", error_code="NOT_FUNDED")
        cls._apply(order, "start_work", fields=[])
        return order

    @classmethod
    def submit_delivery(cls, order: Order, editor: User, file_url: str) -> FinalDelivery:
        """
        Editor submits the final file; issues the client's download token.

        Submission is allowed during the overdue grace period.
        """
        cls._require_party(order, editor, "editor")
        if order.phase not in (SettlementPhase.HELD, SettlementPhase.OVERDUE):
            raise ConflictError(
                "Delivery requires funds held in escrow",
                error_code="NOT_FUNDED",
                details={"phase": order.phase},
            )

        with cls.atomic():
            cls._apply(order, "submit", fields=[])
            delivery = FinalDelivery.objects.filter(order=order).first() or FinalDelivery(order=order)
            delivery.file_url = file_url
            delivery.confirmed_at = None
            delivery.issue_token(settings.DELIVERY_TOKEN_TTL_DAYS)
            delivery.save()
        return delivery

    @classmethod
    def extend_deadline(cls, order: Order, editor: User, new_deadline: datetime) -> Order:
        """
        Push the deadline out, at most MAX_DEADLINE_EXTENSIONS times.
        """
        cls._require_party(order, editor, "editor")
        if order.status not in (OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS):
            raise ConflictError(
                "Deadline can only be extended while work is open",
                error_code="INVALID_STATE_TRANSITION",
            )
        if order.deadline_extension_count >= settings.MAX_DEADLINE_EXTENSIONS:
            raise ValidationError(
                "Maximum deadline extensions reached",
                error_code="MAX_EXTENSIONS",
                details={"max": settings.MAX_DEADLINE_EXTENSIONS},
            )
        if order.deadline and new_deadline <= order.deadline:
            raise ValidationError(
                "New deadline must be later than the current one",
                error_code="DEADLINE_NOT_LATER",
            )

        order.deadline = new_deadline
        order.deadline_extension_count += 1
        cls._save_transition(
            order,
            order.phase,
            order.status,
            ["deadline", "deadline_extension_count"],
        )
        return order

    # ==========================================================================
    # Client actions
    # ==========================================================================

    @classmethod
    def rate_order(cls, order: Order, client: User, score: int, review: str = "") -> Rating:
        """Client rates a submitted order. One rating per order."""
        cls._require_party(order, client, "client")
        if order.status != OrderStatus.SUBMITTED:
            raise ConflictError(
                "Only submitted orders can be rated",
                error_code="NOT_SUBMITTED",
                details={"status": order.status},
            )
        if not 1 <= score <= 5:
            raise ValidationError("Score must be between 1 and 5", error_code="INVALID_SCORE")
        if Rating.objects.filter(order=order).exists():
            raise ConflictError("Order already rated", error_code="ALREADY_RATED")
        return Rating.objects.create(order=order, score=score, review=review)

    @classmethod
    def cancel(cls, order: Order, user: User, reason: str = "") -> Order:
        """
        Client cancels an order.

        Before payment this is a workflow-only cancellation. A funded order
        is refunded at the stage-based percentage.
        """
        cls._require_party(order, user, "client")
        from payments.services import EscrowLedger
        from payments.state_machines import RefundInitiator, RefundReason

        if order.is_funded:
            EscrowLedger.refund(
                order,
                reason=RefundReason.CLIENT_REQUEST,
                reason_details=reason,
                initiated_by=RefundInitiator.CLIENT,
            )
        else:
            EscrowLedger.cancel_unpaid(order, reason=reason or "cancelled by client")
        return order

"""
Escrow ledger: the only writer of an order's settlement phase.

Every money transition follows the same three steps:

1. Check legality in memory with the order's django-fsm transitions.
2. Persist with ``Order.objects.compare_and_swap``, a single UPDATE
   keyed on the phase and status that were read. Zero rows updated
   means another writer moved the order first: StaleTransitionError.
3. Run side effects (gateway payout, chat, notifications) only after
   the write succeeded, so only the winner of a race performs them.

There is no lock. A duplicate webhook racing a client confirmation, or
a retried request racing a scheduler sweep, loses the compare-and-swap
instead of double-settling.

Usage:
    from payments.services import EscrowLedger

    EscrowLedger.initiate(order)
    EscrowLedger.confirm(gateway_order_id, payment_id, signature)
    EscrowLedger.release(order, trigger="download_confirmed")
    EscrowLedger.refund(order, reason=RefundReason.CLIENT_REQUEST)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from django_fsm import can_proceed

from authentication.services import BalanceService
from core.exceptions import PermissionDeniedError, ValidationError
from core.services import BaseService
from orders.models import Order
from orders.money import refund_amount_for, refund_percentage_for, split_amount
from orders.states import (
    FUNDED_PHASES,
    PAYABLE_STATUSES,
    SETTLED_PHASES,
    DisputeResolution,
    EscrowStatus,
    PayoutStatus,
    SettlementPhase,
)
from payments.adapters import get_payment_gateway
from payments.exceptions import (
    AlreadySettledError,
    GatewayError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidStateTransitionError,
    OrderNotFoundError,
    SignatureInvalidError,
    StaleTransitionError,
)
from payments.models import Payment, PayoutAccount, Refund
from payments.services.notifier import SettlementNotifier
from payments.state_machines import PaymentType, RefundInitiator, RefundReason

if TYPE_CHECKING:
    from authentication.models import User
    from payments.adapters import GatewayOrder


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class Eligible:
    """Editor can be paid out now."""

    fund_account: PayoutAccount


@dataclass(frozen=True)
class Ineligible:
    """Editor cannot be paid out yet; earning accrues to pending payout."""

    reason: str


PayoutEligibility = Eligible | Ineligible


@dataclass(frozen=True)
class InitiateResult:
    order: Order
    gateway_order: GatewayOrder


@dataclass(frozen=True)
class ConfirmResult:
    order: Order
    already_confirmed: bool = False
    late_capture_refund: Refund | None = None


@dataclass(frozen=True)
class ReleaseResult:
    order: Order
    payment: Payment
    eligibility: PayoutEligibility


@dataclass(frozen=True)
class RefundResult:
    order: Order
    refund: Refund


def check_payout_eligibility(editor: User) -> PayoutEligibility:
    """KYC must be verified and the payout account verified with payouts enabled."""
    if not editor.is_kyc_verified:
        return Ineligible("kyc_not_verified")
    account = PayoutAccount.objects.filter(user=editor).first()
    if account is None:
        return Ineligible("no_payout_account")
    if not account.is_payable:
        return Ineligible("payout_account_not_verified")
    return Eligible(account)


class EscrowLedger(BaseService):
    """Money transitions on orders."""

    # ==========================================================================
    # Guards
    # ==========================================================================

    @classmethod
    def _get_by_gateway_order_id(cls, gateway_order_id: str) -> Order:
        order = Order.objects.select_related("client", "editor").filter(
            gateway_order_id=gateway_order_id
        ).first()
        if order is None:
            raise OrderNotFoundError(
                "No order matches the gateway order id",
                details={"gateway_order_id": gateway_order_id},
            )
        return order

    @classmethod
    def _ensure_funded(cls, order: Order, action: str) -> None:
        if order.phase in SETTLED_PHASES or order.is_terminal:
            raise AlreadySettledError(
                f"Order {order.order_number} is already settled",
                details={"order_id": str(order.id), "phase": order.phase, "status": order.status},
            )
        if not order.is_funded:
            raise InvalidStateTransitionError(
                f"Cannot {action} an order with no funds in escrow",
                details={"order_id": str(order.id), "phase": order.phase, "action": action},
            )

    @classmethod
    def _guard(cls, order: Order, *transitions: Callable) -> None:
        """Check every FSM transition before applying any of them."""
        for method in transitions:
            if not can_proceed(method):
                if order.phase in SETTLED_PHASES or order.is_terminal:
                    raise AlreadySettledError(
                        f"Order {order.order_number} is already settled",
                        details={"order_id": str(order.id), "phase": order.phase},
                    )
                raise InvalidStateTransitionError(
                    f"Cannot {method.__name__.replace('_', ' ')} from "
                    f"{order.phase}/{order.status}",
                    details={
                        "order_id": str(order.id),
                        "phase": order.phase,
                        "status": order.status,
                        "action": method.__name__,
                    },
                )

    @classmethod
    def _swap(cls, order: Order, expected: tuple[str, str], fields: list[str]) -> None:
        phase, status = expected
        if not Order.objects.compare_and_swap(order, phase=phase, status=status, fields=fields):
            cls.get_logger().info(
                "Lost compare-and-swap on order %s (expected %s/%s)",
                order.order_number,
                phase,
                status,
                extra={"order_id": str(order.id), "phase": phase, "status": status},
            )
            raise StaleTransitionError(
                "Order was changed by another request; reload and retry",
                details={"order_id": str(order.id), "expected_phase": phase, "expected_status": status},
            )

    @staticmethod
    def _holds_payment(order: Order, payment_id: str) -> bool:
        return order.phase in FUNDED_PHASES and order.gateway_payment_id == payment_id

    # ==========================================================================
    # Payment
    # ==========================================================================

    @classmethod
    def initiate(cls, order: Order, amount: int | None = None) -> InitiateResult:
        """
        Create the gateway order for an unpaid order.

        A retry after PAYMENT_FAILED replaces the previous gateway order id.

        Raises:
            GatewayUnavailableError: gateway not configured or unreachable
            InvalidAmountError: amount below the minimum or not the order
                amount, or the order is not awaiting payment
        """
        gateway = get_payment_gateway()
        if not gateway.is_configured():
            raise GatewayUnavailableError(
                "Payment gateway is not configured",
                error_code="GATEWAY_NOT_CONFIGURED",
            )

        amount = order.amount if amount is None else amount
        minimum = settings.ORDER_MINIMUM_AMOUNT
        if amount < minimum or amount != order.amount:
            raise InvalidAmountError(
                "Payment amount must equal the order amount and meet the minimum",
                details={"amount": amount, "order_amount": order.amount, "minimum": minimum},
            )
        if (
            order.phase not in (SettlementPhase.UNPAID, SettlementPhase.PAYMENT_FAILED)
            or order.status not in PAYABLE_STATUSES
        ):
            raise InvalidAmountError(
                "Order is not awaiting payment",
                error_code="NOT_AWAITING_PAYMENT",
                details={"order_id": str(order.id), "phase": order.phase, "status": order.status},
            )

        gateway_order = gateway.create_order(
            amount,
            settings.PAYMENT_CURRENCY,
            correlation_id=str(order.id),
            notes={"order_number": order.order_number, "attempt": str(order.version)},
        )

        expected = (order.phase, order.status)
        cls._guard(order, order.begin_payment)
        order.begin_payment(gateway_order.gateway_order_id)
        cls._swap(order, expected, ["phase", "gateway_order_id"])

        cls.get_logger().info(
            "Payment initiated for order %s",
            order.order_number,
            extra={
                "order_id": str(order.id),
                "gateway_order_id": gateway_order.gateway_order_id,
                "amount": amount,
            },
        )
        return InitiateResult(order=order, gateway_order=gateway_order)

    @classmethod
    def confirm(cls, gateway_order_id: str, payment_id: str, signature: str) -> ConfirmResult:
        """
        Verify a client-reported payment and hold the funds in escrow.

        Idempotent: confirming the same payment id again returns
        ``already_confirmed=True`` without side effects. A gateway
        timeout propagates and leaves the order in PAYMENT_PROCESSING.
        A valid payment for an order that was closed before capture is
        refunded in full; ``late_capture_refund`` carries the Refund.

        Raises:
            OrderNotFoundError: no order for gateway_order_id
            AlreadySettledError: escrow is no longer empty or order is terminal
            SignatureInvalidError: verification failed; phase is now PAYMENT_FAILED
            GatewayUnavailableError: gateway could not verify the payment
            StaleTransitionError: another writer moved the order
        """
        order = cls._get_by_gateway_order_id(gateway_order_id)
        if cls._holds_payment(order, payment_id):
            return ConfirmResult(order=order, already_confirmed=True)
        late_capture = cls._is_late_capture(order)
        if not late_capture:
            cls._ensure_unfunded(order)

        verification = get_payment_gateway().verify_payment(gateway_order_id, payment_id, signature)
        if not verification.valid:
            if late_capture:
                raise SignatureInvalidError(
                    "Payment signature verification failed",
                    details={"gateway_order_id": gateway_order_id},
                )
            cls._fail_payment(order)
            cls.get_logger().warning(
                "Payment verification failed for order %s",
                order.order_number,
                extra={
                    "order_id": str(order.id),
                    "gateway_order_id": gateway_order_id,
                    "payment_id": payment_id,
                    **verification.details,
                },
            )
            SettlementNotifier.payment_failed(order, reason="verification failed")
            raise SignatureInvalidError(
                "Payment signature verification failed",
                details={"gateway_order_id": gateway_order_id},
            )

        if late_capture:
            return cls._refund_late_capture(order, payment_id)
        return cls._hold(order, payment_id, signature)

    @classmethod
    def confirm_captured(cls, gateway_order_id: str, payment_id: str) -> ConfirmResult:
        """
        Hold funds for a capture reported by a verified gateway webhook.

        Same transition and idempotency as ``confirm`` without the
        client signature. Captures for closed orders are refunded.
        """
        order = cls._get_by_gateway_order_id(gateway_order_id)
        if cls._holds_payment(order, payment_id):
            return ConfirmResult(order=order, already_confirmed=True)
        if cls._is_late_capture(order):
            return cls._refund_late_capture(order, payment_id)
        cls._ensure_unfunded(order)
        return cls._hold(order, payment_id, "")

    @classmethod
    def mark_payment_failed(cls, gateway_order_id: str, reason: str = "") -> Order:
        """PAYMENT_PROCESSING -> PAYMENT_FAILED; a no-op from any other phase."""
        order = cls._get_by_gateway_order_id(gateway_order_id)
        if order.phase != SettlementPhase.PAYMENT_PROCESSING:
            cls.get_logger().info(
                "Ignoring payment failure for order %s in phase %s",
                order.order_number,
                order.phase,
                extra={"order_id": str(order.id), "phase": order.phase},
            )
            return order
        cls._fail_payment(order)
        SettlementNotifier.payment_failed(order, reason=reason)
        return order

    @classmethod
    def _ensure_unfunded(cls, order: Order) -> None:
        if order.escrow_status != EscrowStatus.NONE or order.is_terminal:
            raise AlreadySettledError(
                f"Order {order.order_number} already has a settled payment",
                details={
                    "order_id": str(order.id),
                    "phase": order.phase,
                    "escrow_status": order.escrow_status,
                },
            )

    @staticmethod
    def _is_late_capture(order: Order) -> bool:
        """The order was closed before its payment was captured."""
        return order.is_terminal and order.escrow_status == EscrowStatus.NONE

    @classmethod
    def _refund_late_capture(cls, order: Order, payment_id: str) -> ConfirmResult:
        """
        Return a payment captured after the order was cancelled or expired.

        The order stays closed. A full Refund snapshotting the capture
        goes through RefundService, so a gateway refusal still ends in a
        wallet credit. Idempotent per payment id.
        """
        from payments.services.refund_service import RefundService

        refund = Refund.objects.filter(order=order, original_gateway_payment_id=payment_id).first()
        if refund is not None:
            return ConfirmResult(order=order, already_confirmed=True, late_capture_refund=refund)

        now = timezone.now()
        try:
            with transaction.atomic():
                refund = Refund.objects.create(
                    order=order,
                    client=order.client,
                    refund_amount=order.amount,
                    refund_percentage=100,
                    reason=RefundReason.LATE_CAPTURE,
                    reason_details=f"captured after the order was {order.status}",
                    initiated_by=RefundInitiator.SYSTEM,
                    original_gateway_order_id=order.gateway_order_id or "",
                    original_gateway_payment_id=payment_id,
                    original_amount=order.amount,
                    original_paid_at=now,
                    max_retries=settings.REFUND_MAX_RETRIES,
                )
                Order.objects.filter(pk=order.pk).update(
                    gateway_payment_id=payment_id,
                    refund_amount=order.amount,
                    refund_reason=RefundReason.LATE_CAPTURE,
                    refunded_at=now,
                    updated_at=now,
                    version=F("version") + 1,
                )
                Payment.objects.create(
                    order=order,
                    payer=order.editor,
                    payee=order.client,
                    payment_type=PaymentType.REFUND,
                    amount=order.amount,
                    order_snapshot=Payment.snapshot_order(order),
                )
        except IntegrityError:
            # A concurrent delivery of the same capture created it first.
            refund = Refund.objects.filter(order=order, original_gateway_payment_id=payment_id).first()
            if refund is None:
                raise
            return ConfirmResult(order=order, already_confirmed=True, late_capture_refund=refund)

        order.gateway_payment_id = payment_id
        order.refund_amount = order.amount
        order.refund_reason = RefundReason.LATE_CAPTURE
        order.refunded_at = now
        cls.get_logger().warning(
            "Payment %s captured for closed order %s; refunding %s",
            payment_id,
            order.order_number,
            order.amount,
            extra={
                "order_id": str(order.id),
                "payment_id": payment_id,
                "status": order.status,
                "refund_id": str(refund.id),
            },
        )

        RefundService.process(refund)
        refund.refresh_from_db()
        SettlementNotifier.order_refunded(order, refund)
        return ConfirmResult(order=order, late_capture_refund=refund)

    @classmethod
    def _fail_payment(cls, order: Order) -> None:
        if not can_proceed(order.fail_payment):
            return
        expected = (order.phase, order.status)
        order.fail_payment()
        cls._swap(order, expected, ["phase"])

    @classmethod
    def _hold(cls, order: Order, payment_id: str, signature: str) -> ConfirmResult:
        expected = (order.phase, order.status)
        cls._guard(order, order.hold_escrow, order.mark_paid)
        order.hold_escrow(payment_id, signature)
        order.mark_paid()
        try:
            cls._swap(
                order,
                expected,
                ["phase", "status", "gateway_payment_id", "gateway_signature", "escrow_held_at"],
            )
        except StaleTransitionError:
            current = Order.objects.select_related("client", "editor").get(pk=order.pk)
            if cls._holds_payment(current, payment_id):
                return ConfirmResult(order=current, already_confirmed=True)
            raise

        cls.get_logger().info(
            "Escrow held for order %s",
            order.order_number,
            extra={
                "order_id": str(order.id),
                "payment_id": payment_id,
                "amount": order.amount,
                "status": order.status,
            },
        )
        SettlementNotifier.escrow_held(order)
        return ConfirmResult(order=order, already_confirmed=False)

    # ==========================================================================
    # Release
    # ==========================================================================

    @classmethod
    def release(cls, order: Order, trigger: str) -> ReleaseResult:
        """
        Release escrowed funds to the editor and complete the order.

        An ineligible editor gets the earning accrued to their pending
        payout balance instead of a gateway payout. For an eligible
        editor the order is committed with payout_status PROCESSING and
        the payout runs afterwards; a payout failure falls back to the
        same accrual. A crash between the two is picked up by
        retry_stalled_payouts.

        Raises:
            AlreadySettledError: order already released or refunded
            InvalidStateTransitionError: nothing is held in escrow
            StaleTransitionError: another writer moved the order
        """
        cls._ensure_funded(order, "release")
        eligibility = check_payout_eligibility(order.editor)

        expected = (order.phase, order.status)
        cls._guard(order, order.release_escrow, order.complete)
        with transaction.atomic():
            order.release_escrow()
            order.complete()
            # PROCESSING with no gateway_payout_id marks a payout still owed.
            if isinstance(eligibility, Ineligible):
                order.payout_status = PayoutStatus.PENDING
            else:
                order.payout_status = PayoutStatus.PROCESSING
            cls._swap(
                order,
                expected,
                [
                    "phase",
                    "status",
                    "escrow_released_at",
                    "completed_at",
                    "payout_amount",
                    "payout_status",
                ],
            )
            payment = Payment.objects.create(
                order=order,
                payer=order.client,
                payee=order.editor,
                payment_type=PaymentType.ESCROW_RELEASE,
                amount=order.amount,
                platform_fee=order.platform_fee,
                editor_earning=order.editor_earning,
                order_snapshot=Payment.snapshot_order(order),
            )
            BalanceService.record_earning(order.editor_id, order.editor_earning)
            if isinstance(eligibility, Ineligible):
                BalanceService.accrue_pending_payout(order.editor_id, order.editor_earning)

        cls.get_logger().info(
            "Escrow released for order %s (%s)",
            order.order_number,
            trigger,
            extra={
                "order_id": str(order.id),
                "trigger": trigger,
                "editor_earning": order.editor_earning,
                "transaction_id": payment.transaction_id,
            },
        )

        SettlementNotifier.order_completed(order, trigger)
        if isinstance(eligibility, Eligible):
            cls._execute_payout(order, eligibility.fund_account)
        else:
            SettlementNotifier.payout_pending(order, eligibility.reason)

        return ReleaseResult(order=order, payment=payment, eligibility=eligibility)

    @classmethod
    def _update_released(cls, order: Order, **values) -> None:
        """Write payout bookkeeping on a released order; its phase is final."""
        now = timezone.now()
        Order.objects.filter(pk=order.pk, phase=SettlementPhase.RELEASED).update(
            **values, updated_at=now, version=F("version") + 1
        )
        for name, value in values.items():
            setattr(order, name, value)
        order.updated_at = now

    @classmethod
    def _execute_payout(cls, order: Order, fund_account: PayoutAccount) -> None:
        try:
            payout = get_payment_gateway().create_payout(
                fund_account, order.editor_earning, reference=str(order.id)
            )
        except GatewayError as exc:
            cls.get_logger().warning(
                "Payout failed for order %s: %s",
                order.order_number,
                exc.message,
                extra={"order_id": str(order.id), "error_code": exc.error_code},
            )
            cls._update_released(order, payout_status=PayoutStatus.FAILED)
            BalanceService.accrue_pending_payout(order.editor_id, order.editor_earning)
            SettlementNotifier.payout_failed(order, reason=exc.error_code)
            return

        cls._update_released(
            order,
            gateway_payout_id=payout.payout_id,
            payout_status=PayoutStatus.PROCESSING,
        )
        cls.get_logger().info(
            "Payout %s created for order %s",
            payout.payout_id,
            order.order_number,
            extra={"order_id": str(order.id), "gateway_payout_id": payout.payout_id},
        )

    @classmethod
    def resume_payout(cls, order: Order, stalled_before) -> bool:
        """
        Re-drive the payout of a released order that has no transfer recorded.

        The claim bumps ``updated_at`` so a concurrent sweep skips the
        order. The transfer reuses the per-order idempotency key, so a
        transfer the gateway already made is returned, not repeated.

        Returns:
            False when the order no longer matches the stalled criteria
        """
        claimed = Order.objects.filter(
            pk=order.pk,
            phase=SettlementPhase.RELEASED,
            payout_status=PayoutStatus.PROCESSING,
            gateway_payout_id__isnull=True,
            updated_at__lte=stalled_before,
        ).update(updated_at=timezone.now())
        if not claimed:
            return False

        cls.get_logger().warning(
            "Resuming payout for order %s",
            order.order_number,
            extra={"order_id": str(order.id), "editor_earning": order.editor_earning},
        )
        eligibility = check_payout_eligibility(order.editor)
        if isinstance(eligibility, Ineligible):
            cls._update_released(order, payout_status=PayoutStatus.PENDING)
            BalanceService.accrue_pending_payout(order.editor_id, order.editor_earning)
            SettlementNotifier.payout_pending(order, eligibility.reason)
        else:
            cls._execute_payout(order, eligibility.fund_account)
        return True

    @classmethod
    def mark_payout_processed(cls, gateway_payout_id: str) -> Order | None:
        """Webhook: the transfer reached the editor's account."""
        order = Order.objects.filter(gateway_payout_id=gateway_payout_id).first()
        if order is None or order.payout_status == PayoutStatus.PROCESSED:
            return order
        cls._update_released(order, payout_status=PayoutStatus.PROCESSED)
        BalanceService.record_withdrawal(order.editor_id, order.payout_amount or 0)
        SettlementNotifier.payout_processed(order)
        return order

    @classmethod
    def mark_payout_reversed(cls, gateway_payout_id: str) -> Order | None:
        """Webhook: the transfer was reversed; the earning goes back to pending payout."""
        order = Order.objects.filter(gateway_payout_id=gateway_payout_id).first()
        if order is None or order.payout_status == PayoutStatus.FAILED:
            return order
        cls._update_released(order, payout_status=PayoutStatus.FAILED)
        BalanceService.accrue_pending_payout(order.editor_id, order.payout_amount or 0)
        SettlementNotifier.payout_failed(order, reason="transfer_reversed")
        return order

    # ==========================================================================
    # Refund
    # ==========================================================================

    @classmethod
    def refund(
        cls,
        order: Order,
        reason: str,
        percent_fn: Callable[[Order], int] | None = None,
        initiated_by: str = RefundInitiator.SYSTEM,
        reason_details: str = "",
    ) -> RefundResult:
        """
        Refund escrowed funds to the client and cancel the order.

        The percentage comes from the stage table for the order's current
        status unless ``percent_fn`` is given. That status is part of the
        compare-and-swap, so a concurrent status change fails the refund
        instead of refunding at a stale stage.

        The Refund is then processed against the gateway; a gateway
        refusal falls back to a wallet credit.

        Raises:
            AlreadySettledError: order already released or refunded
            InvalidStateTransitionError: nothing is held in escrow
            InvalidAmountError: the computed refund is zero
            StaleTransitionError: another writer moved the order
        """
        from payments.services.refund_service import RefundService

        cls._ensure_funded(order, "refund")
        percentage = percent_fn(order) if percent_fn else refund_percentage_for(order.status)
        amount = refund_amount_for(order.amount, percentage)
        if amount <= 0:
            raise InvalidAmountError(
                f"Nothing to refund for an order in status {order.status}",
                details={"order_id": str(order.id), "status": order.status, "percentage": percentage},
            )

        expected = (order.phase, order.status)
        cls._guard(order, order.refund_escrow, order.cancel)
        with transaction.atomic():
            order.refund_escrow(amount, reason)
            order.cancel(reason=f"refunded: {reason}")
            cls._swap(
                order,
                expected,
                [
                    "phase",
                    "status",
                    "refund_amount",
                    "refund_reason",
                    "refunded_at",
                    "cancelled_at",
                    "cancellation_reason",
                ],
            )
            refund = Refund.objects.create(
                order=order,
                client=order.client,
                refund_amount=amount,
                refund_percentage=percentage,
                reason=reason,
                reason_details=reason_details,
                initiated_by=initiated_by,
                original_gateway_order_id=order.gateway_order_id or "",
                original_gateway_payment_id=order.gateway_payment_id or "",
                original_amount=order.amount,
                original_paid_at=order.escrow_held_at,
                max_retries=settings.REFUND_MAX_RETRIES,
            )
            Payment.objects.create(
                order=order,
                payer=order.editor,
                payee=order.client,
                payment_type=PaymentType.REFUND,
                amount=amount,
                order_snapshot=Payment.snapshot_order(order),
            )

        cls.get_logger().info(
            "Escrow refunded for order %s: %s (%s%%)",
            order.order_number,
            amount,
            percentage,
            extra={
                "order_id": str(order.id),
                "refund_id": str(refund.id),
                "phase": order.phase,
                "reason": reason,
            },
        )

        RefundService.process(refund)
        refund.refresh_from_db()
        SettlementNotifier.order_refunded(order, refund)
        return RefundResult(order=order, refund=refund)

    # ==========================================================================
    # Overdue
    # ==========================================================================

    @classmethod
    def mark_overdue(cls, order: Order, grace_hours: int | None = None) -> Order:
        """
        HELD -> OVERDUE once the deadline has passed.

        Starts the grace period and disables chat. The editor can still
        submit until the grace period ends.
        """
        if grace_hours is None:
            grace_hours = settings.OVERDUE_GRACE_HOURS
        expected = (order.phase, order.status)
        cls._guard(order, order.mark_overdue)
        order.mark_overdue(grace_hours)
        cls._swap(order, expected, ["phase", "overdue_at", "grace_ends_at"])

        cls.get_logger().info(
            "Order %s is overdue; grace period ends %s",
            order.order_number,
            order.grace_ends_at,
            extra={"order_id": str(order.id), "grace_ends_at": order.grace_ends_at.isoformat()},
        )
        SettlementNotifier.order_overdue(order)
        return order

    # ==========================================================================
    # Disputes & Cancellation
    # ==========================================================================

    @classmethod
    def open_dispute(cls, order: Order, raised_by: User, reason: str) -> Order:
        """HELD | OVERDUE -> DISPUTED. Either party may raise it."""
        if raised_by.pk not in (order.client_id, order.editor_id):
            raise PermissionDeniedError(
                "Only the order's parties can open a dispute",
                error_code="NOT_ORDER_PARTY",
                details={"order_id": str(order.id)},
            )
        if not reason.strip():
            raise ValidationError("A dispute reason is required", error_code="REASON_REQUIRED")
        cls._ensure_funded(order, "dispute")

        expected = (order.phase, order.status)
        cls._guard(order, order.open_dispute, order.escalate)
        order.open_dispute(reason)
        order.escalate()
        cls._swap(order, expected, ["phase", "status", "dispute_reason", "disputed_at"])

        cls.get_logger().info(
            "Dispute opened on order %s by user %s",
            order.order_number,
            raised_by.pk,
            extra={"order_id": str(order.id), "raised_by": raised_by.pk},
        )
        SettlementNotifier.dispute_opened(order, raised_by)
        return order

    @classmethod
    def resolve_dispute(
        cls,
        order: Order,
        resolution: str,
        split_percent: int = 50,
    ) -> Order:
        """
        Settle a disputed order.

        RELEASED_TO_EDITOR releases the escrow. REFUNDED_TO_CLIENT refunds
        100%. SPLIT refunds ``split_percent`` to the client and accrues
        the editor's share of the remainder, after the snapshotted fee,
        to their pending payout balance.
        """
        if order.phase != SettlementPhase.DISPUTED:
            cls._ensure_funded(order, "resolve a dispute on")
            raise InvalidStateTransitionError(
                "Order is not in dispute",
                details={"order_id": str(order.id), "phase": order.phase},
            )
        if resolution not in DisputeResolution.values:
            raise ValidationError(
                "Unknown dispute resolution",
                error_code="INVALID_RESOLUTION",
                details={"resolution": resolution},
            )

        if resolution == DisputeResolution.RELEASED_TO_EDITOR:
            cls.release(order, trigger="dispute_resolved")
        elif resolution == DisputeResolution.REFUNDED_TO_CLIENT:
            cls.refund(
                order,
                reason=RefundReason.DISPUTE_RESOLVED,
                percent_fn=lambda _order: 100,
                initiated_by=RefundInitiator.ADMIN,
            )
        else:
            if not 1 <= split_percent <= 99:
                raise ValidationError(
                    "Split percentage must be between 1 and 99",
                    error_code="INVALID_SPLIT",
                    details={"split_percent": split_percent},
                )
            cls.refund(
                order,
                reason=RefundReason.DISPUTE_RESOLVED,
                percent_fn=lambda _order: split_percent,
                initiated_by=RefundInitiator.ADMIN,
                reason_details=f"split {split_percent}% to client",
            )
            remainder = order.amount - order.refund_amount
            editor_share = split_amount(remainder, order.platform_fee_percentage).editor_earning
            if editor_share:
                BalanceService.accrue_pending_payout(order.editor_id, editor_share)
                BalanceService.record_earning(order.editor_id, editor_share)
            order.payout_amount = editor_share
            order.payout_status = PayoutStatus.PENDING

        now = timezone.now()
        order.dispute_resolution = resolution
        order.dispute_resolved_at = now
        Order.objects.filter(pk=order.pk).update(
            dispute_resolution=resolution,
            dispute_resolved_at=now,
            payout_amount=order.payout_amount,
            payout_status=order.payout_status,
            updated_at=now,
            version=F("version") + 1,
        )

        cls.get_logger().info(
            "Dispute on order %s resolved: %s",
            order.order_number,
            resolution,
            extra={"order_id": str(order.id), "resolution": resolution},
        )
        SettlementNotifier.dispute_resolved(order, resolution)
        return order

    @classmethod
    def cancel_unpaid(cls, order: Order, reason: str) -> Order:
        """
        Cancel an order that holds no money. The phase is left as it is.

        Raises:
            AlreadySettledError: order already terminal
            InvalidStateTransitionError: order is funded and must be refunded
        """
        if order.is_terminal:
            raise AlreadySettledError(
                f"Order {order.order_number} is already closed",
                details={"order_id": str(order.id), "status": order.status},
            )
        if order.is_funded:
            raise InvalidStateTransitionError(
                "A funded order must be refunded, not cancelled",
                details={"order_id": str(order.id), "phase": order.phase},
            )

        expected = (order.phase, order.status)
        cls._guard(order, order.cancel)
        order.cancel(reason=reason)
        cls._swap(order, expected, ["status", "cancelled_at", "cancellation_reason"])

        cls.get_logger().info(
            "Order %s cancelled without payment: %s",
            order.order_number,
            reason,
            extra={"order_id": str(order.id), "reason": reason},
        )
        return order

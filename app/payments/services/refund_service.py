"""
Refund processing against the payment gateway.

Refunds are created by EscrowLedger.refund, which has already moved the
order's phase. This service moves the money: a gateway refund to the
original payment, or a credit to the client's wallet when the gateway
refuses the refund or retries run out.

Processing follows three phases so that no database lock is held
during the gateway call:

1. Lock the refund row, INITIATED | FAILED -> PROCESSING, commit. A
   PROCESSING claim that stalled before a gateway refund id was recorded
   is resumed with the same attempt number.
2. Call the gateway with an idempotency key scoped to the attempt.
3. Lock the row again and record the outcome.

Usage:
    from payments.services import RefundService

    result = RefundService.process(refund)
    if not result and result.error_code == "REFUND_RETRY_SCHEDULED":
        ...  # picked up by the refund retry worker
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction
from django_fsm import can_proceed

from authentication.services import BalanceService
from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult
from payments.adapters import IdempotencyKeyGenerator, get_payment_gateway
from payments.exceptions import GatewayError, RefundGatewayFailureError
from payments.models import Refund
from payments.models.payment import generate_transaction_id
from payments.services.notifier import SettlementNotifier
from payments.state_machines import RefundInitiator, RefundStatus

if TYPE_CHECKING:
    from orders.models import Order

logger = logging.getLogger(__name__)

ACTIVE_REFUND_EXCLUDED = (RefundStatus.FAILED, RefundStatus.CANCELLED)
WALLET_CREDITABLE = frozenset(
    {RefundStatus.INITIATED, RefundStatus.PROCESSING, RefundStatus.FAILED}
)


class RefundService(BaseService):
    """Moves refunded money to the client."""

    @classmethod
    def _lock(cls, refund_id) -> Refund:
        return Refund.objects.select_for_update().get(pk=refund_id)

    @classmethod
    def initiate(
        cls,
        order: Order,
        reason: str,
        reason_details: str = "",
        initiated_by: str = RefundInitiator.ADMIN,
    ) -> Refund:
        """
        Refund an order on behalf of an admin or the system.

        Raises:
            ConflictError: an active refund already exists for the order
            plus everything EscrowLedger.refund raises
        """
        from payments.services.escrow_ledger import EscrowLedger

        if Refund.objects.filter(order=order).exclude(status__in=ACTIVE_REFUND_EXCLUDED).exists():
            raise ConflictError(
                "A refund is already in progress for this order",
                error_code="REFUND_EXISTS",
                details={"order_id": str(order.id)},
            )
        result = EscrowLedger.refund(
            order,
            reason=reason,
            initiated_by=initiated_by,
            reason_details=reason_details,
        )
        return result.refund

    @classmethod
    def process(cls, refund: Refund) -> ServiceResult[Refund]:
        """
        Send a refund to the gateway.

        Outcomes:
            COMPLETED: gateway reports the refund succeeded
            PROCESSING: gateway accepted it as pending; ``charge.refunded``
                completes it later
            ADDED_TO_WALLET: no original payment, gateway refused, or
                retries exhausted
            FAILED: transient gateway failure, retry scheduled

        Error codes:
            INVALID_STATE: refund is not INITIATED, FAILED or a stalled
                PROCESSING claim
            REFUND_RETRY_SCHEDULED: transient failure, will retry
        """
        # Phase 1: claim the refund
        with transaction.atomic():
            refund = cls._lock(refund.pk)
            if refund.status in (RefundStatus.INITIATED, RefundStatus.FAILED):
                refund.start_processing()
            elif can_proceed(refund.resume_processing):
                logger.warning(
                    "Resuming stalled refund %s (attempt %s)",
                    refund.id,
                    refund.retry_count + 1,
                    extra={"refund_id": str(refund.id), "order_id": str(refund.order_id)},
                )
                refund.resume_processing()
            else:
                return ServiceResult.failure(
                    f"Refund in status {refund.status} cannot be processed",
                    error_code="INVALID_STATE",
                )
            refund.save()

        if not refund.original_gateway_payment_id:
            logger.info(
                "Refund %s has no original payment; crediting wallet",
                refund.id,
                extra={"refund_id": str(refund.id), "order_id": str(refund.order_id)},
            )
            return cls.credit_to_wallet(refund)

        # Phase 2: gateway call, no lock held
        idempotency_key = IdempotencyKeyGenerator.generate(
            "refund", refund.id, attempt=refund.retry_count + 1
        )
        try:
            gateway_refund = get_payment_gateway().process_refund(
                refund.original_gateway_payment_id,
                refund.refund_amount,
                idempotency_key,
            )
        except RefundGatewayFailureError as exc:
            logger.warning(
                "Gateway refused refund %s: %s; crediting wallet",
                refund.id,
                exc.message,
                extra={
                    "refund_id": str(refund.id),
                    "order_id": str(refund.order_id),
                    "gateway_code": exc.gateway_code,
                },
            )
            return cls.credit_to_wallet(refund)
        except GatewayError as exc:
            return cls._schedule_retry(refund, exc)

        # Phase 3: record the outcome
        with transaction.atomic():
            refund = cls._lock(refund.pk)
            if refund.status != RefundStatus.PROCESSING:
                # A resumed attempt or the charge.refunded webhook recorded it first.
                return ServiceResult.success(refund)
            if gateway_refund.succeeded:
                refund.complete(gateway_refund.refund_id, gateway_refund.status)
            else:
                refund.gateway_refund_id = gateway_refund.refund_id
                refund.gateway_refund_status = gateway_refund.status
            refund.save()

        logger.info(
            "Gateway refund %s for refund %s: %s",
            gateway_refund.refund_id,
            refund.id,
            gateway_refund.status,
            extra={
                "refund_id": str(refund.id),
                "order_id": str(refund.order_id),
                "gateway_refund_id": gateway_refund.refund_id,
                "amount": refund.refund_amount,
            },
        )
        return ServiceResult.success(refund)

    @classmethod
    def _schedule_retry(cls, refund: Refund, exc: GatewayError) -> ServiceResult[Refund]:
        with transaction.atomic():
            refund = cls._lock(refund.pk)
            if refund.status != RefundStatus.PROCESSING:
                return ServiceResult.failure(
                    f"Refund moved to {refund.status} during the gateway call",
                    error_code="INVALID_STATE",
                )
            refund.fail(exc.message, exc.error_code)
            refund.save()

        if refund.retries_exhausted:
            logger.warning(
                "Refund %s failed %s times; crediting wallet",
                refund.id,
                refund.retry_count,
                extra={"refund_id": str(refund.id), "order_id": str(refund.order_id)},
            )
            return cls.credit_to_wallet(refund)

        logger.warning(
            "Refund %s failed (attempt %s), retry at %s: %s",
            refund.id,
            refund.retry_count,
            refund.next_retry_at,
            exc.message,
            extra={
                "refund_id": str(refund.id),
                "order_id": str(refund.order_id),
                "error_code": exc.error_code,
                "is_retryable": exc.is_retryable,
            },
        )
        return ServiceResult.failure(exc.message, error_code="REFUND_RETRY_SCHEDULED")

    @classmethod
    def credit_to_wallet(
        cls,
        refund: Refund,
        transaction_id: str | None = None,
    ) -> ServiceResult[Refund]:
        """
        Credit the refund amount to the client's wallet.

        Idempotent for a refund already ADDED_TO_WALLET.

        Error codes:
            INVALID_STATE: refund already completed or cancelled
        """
        with transaction.atomic():
            refund = cls._lock(refund.pk)
            if refund.status == RefundStatus.ADDED_TO_WALLET:
                return ServiceResult.success(refund)
            if refund.status not in WALLET_CREDITABLE:
                return ServiceResult.failure(
                    f"Refund in status {refund.status} cannot be credited to the wallet",
                    error_code="INVALID_STATE",
                )
            refund.credit_wallet(transaction_id or generate_transaction_id())
            refund.save()
            BalanceService.credit_wallet(refund.client_id, refund.refund_amount)

        logger.info(
            "Refund %s credited to wallet of user %s",
            refund.id,
            refund.client_id,
            extra={
                "refund_id": str(refund.id),
                "order_id": str(refund.order_id),
                "amount": refund.refund_amount,
                "wallet_transaction_id": refund.wallet_transaction_id,
            },
        )
        SettlementNotifier.refund_to_wallet(refund)
        return ServiceResult.success(refund)

    # ==========================================================================
    # Admin & Webhook Entry Points
    # ==========================================================================

    @classmethod
    def retry(cls, refund: Refund) -> ServiceResult[Refund]:
        """Admin retry of a FAILED refund, regardless of the retry schedule."""
        if refund.status != RefundStatus.FAILED:
            raise ConflictError(
                f"Only failed refunds can be retried (status {refund.status})",
                error_code="REFUND_NOT_FAILED",
                details={"refund_id": str(refund.id)},
            )
        return cls.process(refund)

    @classmethod
    def force_wallet_credit(cls, refund: Refund) -> ServiceResult[Refund]:
        """Admin override: skip the gateway and credit the wallet now."""
        if refund.status not in WALLET_CREDITABLE:
            raise ConflictError(
                f"Refund in status {refund.status} cannot be credited to the wallet",
                error_code="INVALID_STATE",
                details={"refund_id": str(refund.id)},
            )
        return cls.credit_to_wallet(refund)

    @classmethod
    def mark_gateway_completed(
        cls,
        gateway_refund_id: str,
        gateway_status: str = "succeeded",
    ) -> ServiceResult[Refund]:
        """
        Complete a pending gateway refund reported by ``charge.refunded``.

        Error codes:
            REFUND_NOT_FOUND: no refund with this gateway id
        """
        with transaction.atomic():
            refund = Refund.objects.select_for_update().filter(
                gateway_refund_id=gateway_refund_id
            ).first()
            if refund is None:
                return ServiceResult.failure(
                    f"No refund for gateway refund {gateway_refund_id}",
                    error_code="REFUND_NOT_FOUND",
                )
            if refund.status != RefundStatus.PROCESSING:
                return ServiceResult.success(refund)
            refund.complete(gateway_refund_id, gateway_status)
            refund.save()

        logger.info(
            "Gateway confirmed refund %s",
            refund.id,
            extra={"refund_id": str(refund.id), "gateway_refund_id": gateway_refund_id},
        )
        return ServiceResult.success(refund)

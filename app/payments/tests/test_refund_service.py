"""
Tests for RefundService: gateway refunds, wallet fallback and retries.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from authentication.models import User
from core.exceptions import ConflictError
from orders.states import OrderStatus
from orders.tests.factories import OrderFactory
from payments.adapters import GatewayRefund
from payments.exceptions import GatewayUnavailableError, RefundGatewayFailureError
from payments.models import Refund
from payments.services import RefundService
from payments.state_machines import RefundInitiator, RefundReason, RefundStatus
from payments.tests.factories import RefundFactory


@pytest.mark.django_db
class TestProcess:
    def test_succeeded_refund_completes(self, gateway):
        refund = RefundFactory()

        result = RefundService.process(refund)

        assert result.success
        refund.refresh_from_db()
        assert refund.status == RefundStatus.COMPLETED
        assert refund.gateway_refund_id == "re_test_1"
        assert refund.completed_at is not None

    def test_uses_attempt_scoped_idempotency_key(self, gateway):
        refund = RefundFactory()

        RefundService.process(refund)

        key = gateway.process_refund.call_args.args[2]
        operation, entity_id, attempt, _ = key.split(":")
        assert (operation, entity_id, attempt) == ("refund", str(refund.id), "1")

    def test_pending_gateway_refund_stays_processing(self, gateway):
        gateway.process_refund.return_value = GatewayRefund(refund_id="re_pending", status="pending")
        refund = RefundFactory()

        RefundService.process(refund)

        refund.refresh_from_db()
        assert refund.status == RefundStatus.PROCESSING
        assert refund.gateway_refund_id == "re_pending"

    def test_without_original_payment_credits_wallet(self, gateway):
        refund = RefundFactory(original_gateway_payment_id="")

        RefundService.process(refund)

        refund.refresh_from_db()
        assert refund.status == RefundStatus.ADDED_TO_WALLET
        gateway.process_refund.assert_not_called()
        assert User.objects.get(pk=refund.client_id).wallet_balance == refund.refund_amount

    def test_refusal_credits_wallet(self, gateway):
        gateway.process_refund.side_effect = RefundGatewayFailureError("already refunded")
        refund = RefundFactory()

        result = RefundService.process(refund)

        assert result.success
        assert result.data.status == RefundStatus.ADDED_TO_WALLET
        assert result.data.wallet_transaction_id

    def test_transient_failure_schedules_retry(self, gateway):
        gateway.process_refund.side_effect = GatewayUnavailableError("timeout")
        refund = RefundFactory()

        result = RefundService.process(refund)

        assert not result
        assert result.error_code == "REFUND_RETRY_SCHEDULED"
        refund.refresh_from_db()
        assert refund.status == RefundStatus.FAILED
        assert refund.retry_count == 1
        assert refund.failure_code == "GATEWAY_UNAVAILABLE"

    def test_last_failed_attempt_credits_wallet(self, gateway):
        gateway.process_refund.side_effect = GatewayUnavailableError("timeout")
        refund = RefundFactory(status=RefundStatus.FAILED, retry_count=2, max_retries=3)

        RefundService.process(refund)

        refund.refresh_from_db()
        assert refund.status == RefundStatus.ADDED_TO_WALLET
        assert refund.retry_count == 3
        assert User.objects.get(pk=refund.client_id).wallet_balance == refund.refund_amount

    def test_completed_refund_is_not_reprocessed(self, gateway):
        refund = RefundFactory(status=RefundStatus.COMPLETED)

        result = RefundService.process(refund)

        assert result.error_code == "INVALID_STATE"
        gateway.process_refund.assert_not_called()

    def test_processing_claim_in_flight_is_not_reprocessed(self, gateway):
        refund = RefundFactory(status=RefundStatus.PROCESSING, gateway_refund_id=None)

        result = RefundService.process(refund)

        assert result.error_code == "INVALID_STATE"
        gateway.process_refund.assert_not_called()

    def test_stalled_claim_is_resumed_on_the_same_attempt(self, gateway):
        refund = RefundFactory(status=RefundStatus.PROCESSING, gateway_refund_id=None)
        Refund.objects.filter(pk=refund.pk).update(updated_at=timezone.now() - timedelta(hours=1))

        result = RefundService.process(refund)

        assert result.success
        assert result.data.status == RefundStatus.COMPLETED
        assert gateway.process_refund.call_args.args[2].split(":")[2] == "1"


@pytest.mark.django_db
class TestWalletCredit:
    def test_credit_is_idempotent(self, gateway):
        refund = RefundFactory()

        RefundService.credit_to_wallet(refund)
        RefundService.credit_to_wallet(refund)

        assert User.objects.get(pk=refund.client_id).wallet_balance == refund.refund_amount

    def test_force_wallet_credit_on_failed_refund(self, gateway):
        refund = RefundFactory(status=RefundStatus.FAILED, retry_count=1)

        result = RefundService.force_wallet_credit(refund)

        assert result.data.status == RefundStatus.ADDED_TO_WALLET

    def test_force_wallet_credit_rejects_completed(self, gateway):
        refund = RefundFactory(status=RefundStatus.COMPLETED)

        with pytest.raises(ConflictError) as exc_info:
            RefundService.force_wallet_credit(refund)

        assert exc_info.value.error_code == "INVALID_STATE"


@pytest.mark.django_db
class TestAdminEntryPoints:
    def test_initiate_refunds_at_stage_percentage(self, gateway, client_user, editor):
        order = OrderFactory(client=client_user, editor=editor, held=True, status=OrderStatus.SUBMITTED)

        refund = RefundService.initiate(order, reason=RefundReason.ADMIN_INITIATED)

        assert refund.refund_amount == 500
        assert refund.initiated_by == RefundInitiator.ADMIN

    def test_initiate_rejects_second_active_refund(self, gateway):
        refund = RefundFactory(status=RefundStatus.PROCESSING)

        with pytest.raises(ConflictError) as exc_info:
            RefundService.initiate(refund.order, reason=RefundReason.ADMIN_INITIATED)

        assert exc_info.value.error_code == "REFUND_EXISTS"

    def test_retry_requires_failed_status(self, gateway):
        refund = RefundFactory(status=RefundStatus.PROCESSING)

        with pytest.raises(ConflictError) as exc_info:
            RefundService.retry(refund)

        assert exc_info.value.error_code == "REFUND_NOT_FAILED"

    def test_retry_failed_refund(self, gateway):
        refund = RefundFactory(status=RefundStatus.FAILED, retry_count=1)

        result = RefundService.retry(refund)

        assert result.success
        assert Refund.objects.get(pk=refund.pk).status == RefundStatus.COMPLETED


@pytest.mark.django_db
class TestMarkGatewayCompleted:
    def test_completes_processing_refund(self, gateway):
        refund = RefundFactory(status=RefundStatus.PROCESSING, gateway_refund_id="re_async")

        result = RefundService.mark_gateway_completed("re_async")

        assert result.success
        assert Refund.objects.get(pk=refund.pk).status == RefundStatus.COMPLETED

    def test_already_completed_is_a_no_op(self, gateway):
        refund = RefundFactory(status=RefundStatus.COMPLETED, gateway_refund_id="re_done")

        result = RefundService.mark_gateway_completed("re_done")

        assert result.success
        assert result.data.pk == refund.pk

    def test_unknown_refund(self, gateway, db):
        result = RefundService.mark_gateway_completed("re_unknown")

        assert result.error_code == "REFUND_NOT_FOUND"

"""
Tests for EscrowLedger money transitions.

Covers payment initiation and confirmation, release with and without a
payable editor, refunds at stage percentages, overdue marking, disputes
and the compare-and-swap behavior that keeps concurrent writers from
settling an order twice.
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from authentication.models import User
from core.exceptions import PermissionDeniedError, ValidationError
from notifications.models import Notification, NotificationKind
from orders.models import Order
from orders.services import OrderService
from orders.states import (
    DisputeResolution,
    EscrowStatus,
    OrderStatus,
    PaymentStatus,
    PayoutStatus,
    SettlementPhase,
)
from orders.tests.factories import OrderFactory
from payments.adapters import GatewayPayout, PaymentVerification
from payments.exceptions import (
    AlreadySettledError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidStateTransitionError,
    NoFundAccountError,
    OrderNotFoundError,
    RefundGatewayFailureError,
    SignatureInvalidError,
    StaleTransitionError,
)
from payments.models import Payment, Refund
from payments.services import (
    DeliveryService,
    Eligible,
    EscrowLedger,
    Ineligible,
    check_payout_eligibility,
)
from payments.state_machines import (
    PaymentType,
    PayoutAccountStatus,
    RefundMethod,
    RefundReason,
    RefundStatus,
)


def _reload(order: Order) -> Order:
    return Order.objects.get(pk=order.pk)


# =============================================================================
# Payment
# =============================================================================


@pytest.mark.django_db
class TestInitiate:
    def test_creates_gateway_order_and_moves_to_processing(self, gateway, unpaid_order):
        result = EscrowLedger.initiate(unpaid_order)

        order = _reload(unpaid_order)
        assert order.phase == SettlementPhase.PAYMENT_PROCESSING
        assert order.payment_status == PaymentStatus.PROCESSING
        assert order.gateway_order_id == result.gateway_order.gateway_order_id
        args, kwargs = gateway.create_order.call_args
        assert args[0] == 1000
        assert kwargs["correlation_id"] == str(unpaid_order.id)

    def test_amount_must_match_order(self, gateway, unpaid_order):
        with pytest.raises(InvalidAmountError):
            EscrowLedger.initiate(unpaid_order, amount=900)

        gateway.create_order.assert_not_called()
        assert _reload(unpaid_order).phase == SettlementPhase.UNPAID

    def test_unconfigured_gateway(self, gateway, unpaid_order):
        gateway.is_configured.return_value = False

        with pytest.raises(GatewayUnavailableError) as exc_info:
            EscrowLedger.initiate(unpaid_order)

        assert exc_info.value.error_code == "GATEWAY_NOT_CONFIGURED"
        assert _reload(unpaid_order).phase == SettlementPhase.UNPAID

    def test_funded_order_is_not_payable(self, gateway, held_order):
        with pytest.raises(InvalidAmountError) as exc_info:
            EscrowLedger.initiate(held_order)

        assert exc_info.value.error_code == "NOT_AWAITING_PAYMENT"
        gateway.create_order.assert_not_called()

    def test_retry_after_failed_payment(self, gateway, unpaid_order):
        unpaid_order.phase = SettlementPhase.PAYMENT_FAILED
        unpaid_order.save()

        EscrowLedger.initiate(unpaid_order)

        assert _reload(unpaid_order).phase == SettlementPhase.PAYMENT_PROCESSING


@pytest.mark.django_db
class TestConfirm:
    def test_holds_escrow(self, gateway, processing_order):
        result = EscrowLedger.confirm(processing_order.gateway_order_id, "ch_1", "sig")

        order = _reload(processing_order)
        assert result.already_confirmed is False
        assert order.phase == SettlementPhase.HELD
        assert order.status == OrderStatus.NEW
        assert order.escrow_status == EscrowStatus.HELD
        assert order.payment_status == PaymentStatus.ESCROW
        assert order.gateway_payment_id == "ch_1"
        assert order.escrow_held_at is not None
        assert Notification.objects.filter(
            recipient=order.editor, kind=NotificationKind.ESCROW_HELD
        ).count() == 1

    def test_awaiting_payment_request_becomes_accepted(self, gateway, client_user, editor):
        order = OrderFactory(
            client=client_user,
            editor=editor,
            status=OrderStatus.AWAITING_PAYMENT,
            processing=True,
        )

        EscrowLedger.confirm(order.gateway_order_id, "ch_2", "sig")

        assert _reload(order).status == OrderStatus.ACCEPTED

    def test_confirm_is_idempotent(self, gateway, processing_order):
        EscrowLedger.confirm(processing_order.gateway_order_id, "ch_1", "sig")
        held_at = _reload(processing_order).escrow_held_at

        second = EscrowLedger.confirm(processing_order.gateway_order_id, "ch_1", "sig")

        assert second.already_confirmed is True
        assert _reload(processing_order).escrow_held_at == held_at
        assert gateway.verify_payment.call_count == 1
        assert Notification.objects.filter(kind=NotificationKind.ESCROW_HELD).count() == 1

    def test_invalid_signature_fails_payment(self, gateway, processing_order):
        gateway.verify_payment.return_value = PaymentVerification(
            valid=False, details={"reason": "signature_mismatch"}
        )

        with pytest.raises(SignatureInvalidError):
            EscrowLedger.confirm(processing_order.gateway_order_id, "ch_1", "bad")

        order = _reload(processing_order)
        assert order.phase == SettlementPhase.PAYMENT_FAILED
        assert order.payment_status == PaymentStatus.FAILED
        assert Notification.objects.filter(
            recipient=order.client, kind=NotificationKind.PAYMENT_FAILED
        ).exists()

    def test_unknown_gateway_order(self, gateway, db):
        with pytest.raises(OrderNotFoundError):
            EscrowLedger.confirm("pi_missing", "ch_1", "sig")

    def test_different_payment_on_settled_order(self, gateway, held_order):
        with pytest.raises(AlreadySettledError):
            EscrowLedger.confirm(held_order.gateway_order_id, "ch_other", "sig")

        assert _reload(held_order).gateway_payment_id == held_order.gateway_payment_id

    def test_gateway_timeout_leaves_order_processing(self, gateway, processing_order):
        gateway.verify_payment.side_effect = GatewayUnavailableError("timeout")

        with pytest.raises(GatewayUnavailableError):
            EscrowLedger.confirm(processing_order.gateway_order_id, "ch_1", "sig")

        assert _reload(processing_order).phase == SettlementPhase.PAYMENT_PROCESSING

    def test_capture_after_failed_verification(self, gateway, processing_order):
        processing_order.phase = SettlementPhase.PAYMENT_FAILED
        processing_order.save()

        EscrowLedger.confirm_captured(processing_order.gateway_order_id, "ch_1")

        assert _reload(processing_order).phase == SettlementPhase.HELD


@pytest.mark.django_db
class TestCaptureAfterClose:
    @pytest.fixture
    def expired_order(self, client_user, editor):
        """Payment was started, then the unpaid order was cancelled."""
        order = OrderFactory(
            client=client_user,
            editor=editor,
            processing=True,
            status=OrderStatus.AWAITING_PAYMENT,
        )
        return EscrowLedger.cancel_unpaid(order, reason="payment timeout")

    def test_webhook_capture_is_refunded_in_full(self, gateway, expired_order):
        result = EscrowLedger.confirm_captured(expired_order.gateway_order_id, "ch_late")

        refund = result.late_capture_refund
        assert refund.reason == RefundReason.LATE_CAPTURE
        assert refund.refund_amount == expired_order.amount
        assert refund.refund_percentage == 100
        assert refund.original_gateway_payment_id == "ch_late"
        assert refund.status == RefundStatus.COMPLETED
        gateway.process_refund.assert_called_once()
        assert gateway.process_refund.call_args.args[:2] == ("ch_late", expired_order.amount)

        order = _reload(expired_order)
        assert order.status == OrderStatus.CANCELLED
        assert order.escrow_status == EscrowStatus.NONE
        assert order.gateway_payment_id == "ch_late"
        assert order.refund_amount == expired_order.amount

    def test_redelivered_capture_refunds_once(self, gateway, expired_order):
        EscrowLedger.confirm_captured(expired_order.gateway_order_id, "ch_late")
        second = EscrowLedger.confirm_captured(expired_order.gateway_order_id, "ch_late")

        assert second.already_confirmed is True
        assert Refund.objects.filter(order=expired_order).count() == 1
        assert gateway.process_refund.call_count == 1

    def test_gateway_refusal_credits_wallet(self, gateway, expired_order):
        gateway.process_refund.side_effect = RefundGatewayFailureError("charge disputed")

        result = EscrowLedger.confirm_captured(expired_order.gateway_order_id, "ch_late")

        assert result.late_capture_refund.status == RefundStatus.ADDED_TO_WALLET
        client = User.objects.get(pk=expired_order.client_id)
        assert client.wallet_balance == expired_order.amount

    def test_client_confirmation_is_refunded(self, gateway, expired_order):
        result = EscrowLedger.confirm(expired_order.gateway_order_id, "ch_late", "sig")

        assert result.late_capture_refund is not None
        assert _reload(expired_order).status == OrderStatus.CANCELLED

    def test_client_confirmation_with_bad_signature(self, gateway, expired_order):
        gateway.verify_payment.return_value = PaymentVerification(valid=False)

        with pytest.raises(SignatureInvalidError):
            EscrowLedger.confirm(expired_order.gateway_order_id, "ch_late", "bad")

        assert not Refund.objects.exists()
        assert _reload(expired_order).phase == SettlementPhase.PAYMENT_PROCESSING


@pytest.mark.django_db
class TestMarkPaymentFailed:
    def test_processing_order_fails(self, gateway, processing_order):
        EscrowLedger.mark_payment_failed(processing_order.gateway_order_id, "card_declined")

        assert _reload(processing_order).phase == SettlementPhase.PAYMENT_FAILED

    def test_held_order_is_untouched(self, gateway, held_order):
        EscrowLedger.mark_payment_failed(held_order.gateway_order_id)

        assert _reload(held_order).phase == SettlementPhase.HELD


# =============================================================================
# Release
# =============================================================================


@pytest.mark.django_db
class TestPayoutEligibility:
    def test_verified_editor_with_account(self, editor):
        assert isinstance(check_payout_eligibility(editor), Eligible)

    def test_kyc_not_verified(self, unverified_editor):
        assert check_payout_eligibility(unverified_editor) == Ineligible("kyc_not_verified")

    def test_account_not_verified(self, editor):
        editor.payout_account.status = PayoutAccountStatus.PENDING
        editor.payout_account.save()

        assert check_payout_eligibility(editor) == Ineligible("payout_account_not_verified")


@pytest.mark.django_db
class TestRelease:
    def test_release_pays_out_eligible_editor(self, gateway, held_order):
        result = EscrowLedger.release(held_order, trigger="download_confirmed")

        order = _reload(held_order)
        assert order.phase == SettlementPhase.RELEASED
        assert order.status == OrderStatus.COMPLETED
        assert order.escrow_status == EscrowStatus.RELEASED
        assert order.payment_status == PaymentStatus.RELEASED
        assert order.payout_status == PayoutStatus.PROCESSING
        assert order.gateway_payout_id == "tr_test_1"
        assert order.payout_amount == 900
        gateway.create_payout.assert_called_once()
        assert gateway.create_payout.call_args.args[1] == 900

        payment = result.payment
        assert payment.payment_type == PaymentType.ESCROW_RELEASE
        assert (payment.amount, payment.platform_fee, payment.editor_earning) == (1000, 100, 900)
        assert User.objects.get(pk=order.editor_id).total_earnings == 900

    def test_ineligible_editor_accrues_pending_payout(self, gateway, client_user, unverified_editor):
        order = OrderFactory(client=client_user, editor=unverified_editor, held=True)

        result = EscrowLedger.release(order, trigger="download_confirmed")

        assert result.eligibility == Ineligible("kyc_not_verified")
        order = _reload(order)
        assert order.phase == SettlementPhase.RELEASED
        assert order.payout_status == PayoutStatus.PENDING
        gateway.create_payout.assert_not_called()
        assert User.objects.get(pk=unverified_editor.pk).pending_payout_balance == 900
        assert Notification.objects.filter(
            recipient=unverified_editor, kind=NotificationKind.PAYOUT_PENDING
        ).exists()

    def test_payout_is_recorded_as_owed_before_the_transfer(self, gateway, held_order):
        committed = {}

        def create_payout(fund_account, amount, reference):
            committed["order"] = _reload(held_order)
            return GatewayPayout(payout_id="tr_test_1", status="processing")

        gateway.create_payout.side_effect = create_payout

        EscrowLedger.release(held_order, trigger="download_confirmed")

        assert committed["order"].phase == SettlementPhase.RELEASED
        assert committed["order"].payout_status == PayoutStatus.PROCESSING
        assert committed["order"].gateway_payout_id is None

    def test_resume_payout_skips_recorded_transfer(self, gateway, held_order):
        EscrowLedger.release(held_order, trigger="download_confirmed")
        gateway.create_payout.reset_mock()

        resumed = EscrowLedger.resume_payout(_reload(held_order), timezone.now() + timedelta(hours=1))

        assert resumed is False
        gateway.create_payout.assert_not_called()

    def test_payout_failure_keeps_release(self, gateway, held_order):
        gateway.create_payout.side_effect = NoFundAccountError("no destination")

        EscrowLedger.release(held_order, trigger="download_confirmed")

        order = _reload(held_order)
        assert order.phase == SettlementPhase.RELEASED
        assert order.payout_status == PayoutStatus.FAILED
        assert User.objects.get(pk=order.editor_id).pending_payout_balance == 900

    def test_release_without_escrow_is_rejected(self, gateway, unpaid_order):
        before = _reload(unpaid_order)

        with pytest.raises(InvalidStateTransitionError):
            EscrowLedger.release(unpaid_order, trigger="download_confirmed")

        after = _reload(unpaid_order)
        assert (after.phase, after.status, after.version) == (before.phase, before.status, before.version)
        gateway.create_payout.assert_not_called()
        assert not Payment.objects.exists()

    def test_concurrent_release_settles_once(self, gateway, held_order):
        first = Order.objects.get(pk=held_order.pk)
        second = Order.objects.get(pk=held_order.pk)

        EscrowLedger.release(first, trigger="download_confirmed")
        with pytest.raises(StaleTransitionError):
            EscrowLedger.release(second, trigger="download_confirmed")

        assert gateway.create_payout.call_count == 1
        assert Payment.objects.filter(order=held_order).count() == 1
        assert User.objects.get(pk=held_order.editor_id).total_earnings == 900

    def test_released_order_cannot_be_refunded(self, gateway, held_order):
        EscrowLedger.release(held_order, trigger="download_confirmed")
        released = _reload(held_order)

        with pytest.raises(AlreadySettledError):
            EscrowLedger.refund(released, reason=RefundReason.CLIENT_REQUEST)

        after = _reload(held_order)
        assert after.phase == SettlementPhase.RELEASED
        assert after.refund_amount is None
        gateway.process_refund.assert_not_called()

    def test_payout_processed_webhook(self, gateway, held_order):
        EscrowLedger.release(held_order, trigger="download_confirmed")

        EscrowLedger.mark_payout_processed("tr_test_1")
        EscrowLedger.mark_payout_processed("tr_test_1")

        order = _reload(held_order)
        assert order.payout_status == PayoutStatus.PROCESSED
        assert User.objects.get(pk=order.editor_id).total_withdrawn == 900

    def test_payout_reversed_webhook(self, gateway, held_order):
        EscrowLedger.release(held_order, trigger="download_confirmed")

        EscrowLedger.mark_payout_reversed("tr_test_1")

        order = _reload(held_order)
        assert order.payout_status == PayoutStatus.FAILED
        assert User.objects.get(pk=order.editor_id).pending_payout_balance == 900


# =============================================================================
# Refund
# =============================================================================


@pytest.mark.django_db
class TestRefund:
    def test_work_in_progress_refunds_seventy_five_percent(self, gateway, client_user, editor):
        order = OrderFactory(client=client_user, editor=editor, held=True, status=OrderStatus.IN_PROGRESS)

        result = EscrowLedger.refund(order, reason=RefundReason.CLIENT_REQUEST)

        assert result.refund.refund_amount == 750
        assert result.refund.refund_percentage == 75
        assert result.refund.status == RefundStatus.COMPLETED
        gateway.process_refund.assert_called_once()
        assert gateway.process_refund.call_args.args[:2] == (order.gateway_payment_id, 750)

        order = _reload(order)
        assert order.phase == SettlementPhase.REFUNDED
        assert order.status == OrderStatus.CANCELLED
        assert order.escrow_status == EscrowStatus.REFUNDED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.refund_amount == 750
        refund_payment = Payment.objects.get(order=order, payment_type=PaymentType.REFUND)
        assert refund_payment.amount == 750
        assert refund_payment.payee_id == client_user.pk

    def test_gateway_refusal_credits_wallet(self, gateway, held_order):
        gateway.process_refund.side_effect = RefundGatewayFailureError("charge already refunded")

        result = EscrowLedger.refund(held_order, reason=RefundReason.CLIENT_REQUEST)

        refund = result.refund
        assert refund.status == RefundStatus.ADDED_TO_WALLET
        assert refund.refund_method == RefundMethod.WALLET
        assert refund.wallet_credited is True
        assert User.objects.get(pk=held_order.client_id).wallet_balance == 1000
        assert Notification.objects.filter(
            recipient=held_order.client, kind=NotificationKind.REFUND_TO_WALLET
        ).exists()

    def test_transient_failure_schedules_retry(self, gateway, held_order):
        gateway.process_refund.side_effect = GatewayUnavailableError("timeout")

        result = EscrowLedger.refund(held_order, reason=RefundReason.CLIENT_REQUEST)

        refund = result.refund
        assert refund.status == RefundStatus.FAILED
        assert refund.retry_count == 1
        assert refund.next_retry_at is not None
        assert _reload(held_order).phase == SettlementPhase.REFUNDED

    def test_completed_stage_refunds_nothing(self, gateway, held_order):
        with pytest.raises(InvalidAmountError):
            EscrowLedger.refund(
                held_order,
                reason=RefundReason.CLIENT_REQUEST,
                percent_fn=lambda _order: 0,
            )

        assert _reload(held_order).phase == SettlementPhase.HELD
        assert not Refund.objects.exists()

    def test_stale_status_fails_refund(self, gateway, held_order):
        stale = Order.objects.get(pk=held_order.pk)
        Order.objects.filter(pk=held_order.pk).update(status=OrderStatus.IN_PROGRESS)

        with pytest.raises(StaleTransitionError):
            EscrowLedger.refund(stale, reason=RefundReason.CLIENT_REQUEST)

        assert _reload(held_order).phase == SettlementPhase.HELD
        assert not Refund.objects.exists()

    def test_refund_notifies_both_parties(self, gateway, held_order):
        EscrowLedger.refund(held_order, reason=RefundReason.CLIENT_REQUEST)

        recipients = set(
            Notification.objects.filter(kind=NotificationKind.REFUND_PROCESSED).values_list(
                "recipient_id", flat=True
            )
        )
        assert recipients == {held_order.client_id, held_order.editor_id}


# =============================================================================
# Overdue & Disputes
# =============================================================================


@pytest.mark.django_db
class TestMarkOverdue:
    def test_starts_grace_period(self, gateway, held_order):
        with freeze_time("2026-03-01 12:00:00"):
            EscrowLedger.mark_overdue(held_order)
            now = timezone.now()

        order = _reload(held_order)
        assert order.phase == SettlementPhase.OVERDUE
        assert order.is_overdue
        assert order.chat_disabled is True
        assert order.grace_ends_at == now + timedelta(hours=24)
        assert order.escrow_status == EscrowStatus.HELD

    def test_only_held_orders(self, gateway, unpaid_order):
        with pytest.raises(InvalidStateTransitionError):
            EscrowLedger.mark_overdue(unpaid_order)


@pytest.mark.django_db
class TestDisputes:
    def test_either_party_opens_dispute(self, gateway, held_order):
        EscrowLedger.open_dispute(held_order, held_order.editor, "Client unresponsive")

        order = _reload(held_order)
        assert order.phase == SettlementPhase.DISPUTED
        assert order.status == OrderStatus.DISPUTED
        assert order.escrow_status == EscrowStatus.DISPUTED
        assert order.dispute_reason == "Client unresponsive"

    def test_outsider_cannot_dispute(self, gateway, held_order, admin_user):
        with pytest.raises(PermissionDeniedError):
            EscrowLedger.open_dispute(held_order, admin_user, "reason")

    def test_reason_required(self, gateway, held_order):
        with pytest.raises(ValidationError):
            EscrowLedger.open_dispute(held_order, held_order.client, "   ")

    def test_resolve_released_to_editor(self, gateway, held_order):
        EscrowLedger.open_dispute(held_order, held_order.client, "Late")

        EscrowLedger.resolve_dispute(_reload(held_order), DisputeResolution.RELEASED_TO_EDITOR)

        order = _reload(held_order)
        assert order.phase == SettlementPhase.RELEASED
        assert order.status == OrderStatus.COMPLETED
        assert order.dispute_resolution == DisputeResolution.RELEASED_TO_EDITOR
        assert order.dispute_resolved_at is not None

    def test_resolve_refunded_to_client(self, gateway, held_order):
        EscrowLedger.open_dispute(held_order, held_order.client, "Wrong format")

        EscrowLedger.resolve_dispute(_reload(held_order), DisputeResolution.REFUNDED_TO_CLIENT)

        order = _reload(held_order)
        assert order.phase == SettlementPhase.REFUNDED
        assert order.refund_amount == 1000

    def test_resolve_split(self, gateway, held_order):
        EscrowLedger.open_dispute(held_order, held_order.client, "Half done")

        EscrowLedger.resolve_dispute(_reload(held_order), DisputeResolution.SPLIT, split_percent=40)

        order = _reload(held_order)
        assert order.phase == SettlementPhase.REFUNDED
        assert order.refund_amount == 400
        # 600 remainder, 10% fee snapshotted on the order
        assert order.payout_amount == 540
        assert order.payout_status == PayoutStatus.PENDING
        editor = User.objects.get(pk=order.editor_id)
        assert editor.pending_payout_balance == 540
        assert editor.total_earnings == 540

    def test_resolve_requires_dispute(self, gateway, held_order):
        with pytest.raises(InvalidStateTransitionError):
            EscrowLedger.resolve_dispute(held_order, DisputeResolution.SPLIT)


@pytest.mark.django_db
class TestCancelUnpaid:
    def test_cancels_without_touching_phase(self, gateway, unpaid_order):
        EscrowLedger.cancel_unpaid(unpaid_order, reason="changed my mind")

        order = _reload(unpaid_order)
        assert order.status == OrderStatus.CANCELLED
        assert order.phase == SettlementPhase.UNPAID
        assert order.cancellation_reason == "changed my mind"

    def test_funded_order_must_be_refunded(self, gateway, held_order):
        with pytest.raises(InvalidStateTransitionError):
            EscrowLedger.cancel_unpaid(held_order, reason="nope")

    def test_closed_order(self, gateway, unpaid_order):
        EscrowLedger.cancel_unpaid(unpaid_order, reason="first")

        with pytest.raises(AlreadySettledError):
            EscrowLedger.cancel_unpaid(_reload(unpaid_order), reason="second")


# =============================================================================
# Full journey
# =============================================================================


@pytest.mark.django_db
def test_gig_from_payment_to_payout(gateway, client_user, editor):
    """Pay, accept, work, deliver, rate, confirm: the editor is paid 900 of 1000."""
    order = OrderService.create_order(client=client_user, editor=editor, amount=1000)
    assert (order.platform_fee, order.editor_earning) == (100, 900)

    initiated = EscrowLedger.initiate(order)
    confirmed = EscrowLedger.confirm(initiated.gateway_order.gateway_order_id, "ch_journey", "sig")
    order = confirmed.order

    OrderService.accept(order, editor)
    OrderService.start_work(order, editor)
    delivery = OrderService.submit_delivery(order, editor, file_url="https://cdn.example.com/final.mp4")
    OrderService.rate_order(order, client_user, score=5)

    DeliveryService.confirm_download(order, client_user, "CONFIRM", delivery.download_token)

    order = _reload(order)
    assert order.phase == SettlementPhase.RELEASED
    assert order.status == OrderStatus.COMPLETED
    assert order.payout_status == PayoutStatus.PROCESSING
    gateway.create_payout.assert_called_once_with(
        editor.payout_account, 900, reference=str(order.id)
    )
    assert Payment.objects.get(order=order).editor_earning == 900

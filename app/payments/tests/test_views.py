"""
Tests for the payments API views and their error mapping.
"""

import uuid

import pytest
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from authentication.models import User
from authentication.tests.factories import ClientFactory
from orders.models import FinalDelivery, Order
from orders.states import OrderStatus, SettlementPhase
from orders.tests.factories import OrderFactory
from payments.adapters import PaymentVerification
from payments.exceptions import GatewayUnavailableError, RefundGatewayFailureError
from payments.state_machines import RefundStatus
from payments.tests.factories import PaymentFactory, RefundFactory


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def as_user(api_client):
    def _as(user):
        api_client.force_authenticate(user=user)
        return api_client

    return _as


# =============================================================================
# Payment
# =============================================================================


@pytest.mark.django_db
class TestInitiatePaymentView:
    def test_client_initiates(self, gateway, as_user, unpaid_order):
        url = reverse("payments:initiate_payment", kwargs={"order_id": unpaid_order.id})

        response = as_user(unpaid_order.client).post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["gateway_order_id"].startswith("pi_")
        assert response.data["client_secret"] == "pi_secret_test"
        assert response.data["order"]["phase"] == SettlementPhase.PAYMENT_PROCESSING

    def test_editor_cannot_pay(self, gateway, as_user, unpaid_order):
        url = reverse("payments:initiate_payment", kwargs={"order_id": unpaid_order.id})

        response = as_user(unpaid_order.editor).post(url)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        gateway.create_order.assert_not_called()

    def test_anonymous(self, gateway, api_client, unpaid_order):
        url = reverse("payments:initiate_payment", kwargs={"order_id": unpaid_order.id})

        response = api_client.post(url)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unknown_order(self, gateway, as_user, client_user):
        url = reverse("payments:initiate_payment", kwargs={"order_id": uuid.uuid4()})

        response = as_user(client_user).post(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_gateway_down(self, gateway, as_user, unpaid_order):
        gateway.create_order.side_effect = GatewayUnavailableError("timeout")
        url = reverse("payments:initiate_payment", kwargs={"order_id": unpaid_order.id})

        response = as_user(unpaid_order.client).post(url)

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data["error_code"] == "SERVICE_UNAVAILABLE"
        assert "timeout" not in str(response.data)


@pytest.mark.django_db
class TestVerifyPaymentView:
    def _payload(self, order, payment_id="ch_api_1"):
        return {
            "gatewayOrderId": order.gateway_order_id,
            "paymentId": payment_id,
            "signature": "sig",
        }

    def test_verify_holds_escrow(self, gateway, as_user, processing_order):
        url = reverse("payments:verify_payment")

        response = as_user(processing_order.client).post(url, self._payload(processing_order), format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["already_confirmed"] is False
        assert response.data["order"]["escrow_status"] == "held"

    def test_second_verify_is_idempotent(self, gateway, as_user, processing_order):
        url = reverse("payments:verify_payment")
        client = as_user(processing_order.client)

        client.post(url, self._payload(processing_order), format="json")
        response = client.post(url, self._payload(processing_order), format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["already_confirmed"] is True

    def test_bad_signature(self, gateway, as_user, processing_order):
        gateway.verify_payment.return_value = PaymentVerification(valid=False)
        url = reverse("payments:verify_payment")

        response = as_user(processing_order.client).post(url, self._payload(processing_order), format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "SIGNATURE_INVALID"

    def test_missing_fields(self, gateway, as_user, client_user):
        url = reverse("payments:verify_payment")

        response = as_user(client_user).post(url, {"paymentId": "ch_1"}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_gateway_order(self, gateway, as_user, client_user):
        url = reverse("payments:verify_payment")

        response = as_user(client_user).post(
            url,
            {"gatewayOrderId": "pi_nope", "paymentId": "ch_1", "signature": "sig"},
            format="json",
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Delivery
# =============================================================================


@pytest.mark.django_db
class TestConfirmDeliveryView:
    def test_confirm_releases(self, gateway, as_user, submitted_order):
        url = reverse("payments:confirm_delivery", kwargs={"order_id": submitted_order.id})
        token = FinalDelivery.objects.get(order=submitted_order).download_token

        response = as_user(submitted_order.client).post(
            url, {"confirmText": "CONFIRM", "token": token}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["phase"] == SettlementPhase.RELEASED
        assert response.data["status"] == OrderStatus.COMPLETED

    def test_repeated_confirm_reports_already_settled(self, gateway, as_user, submitted_order):
        url = reverse("payments:confirm_delivery", kwargs={"order_id": submitted_order.id})
        token = FinalDelivery.objects.get(order=submitted_order).download_token
        client = as_user(submitted_order.client)

        client.post(url, {"confirmText": "CONFIRM", "token": token}, format="json")
        response = client.post(url, {"confirmText": "CONFIRM", "token": token}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == "already_settled"
        assert gateway.create_payout.call_count == 1

    def test_wrong_text(self, gateway, as_user, submitted_order):
        url = reverse("payments:confirm_delivery", kwargs={"order_id": submitted_order.id})

        response = as_user(submitted_order.client).post(
            url, {"confirmText": "ok", "token": "x"}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "CONFIRM_TEXT_MISMATCH"


# =============================================================================
# Refunds
# =============================================================================


@pytest.mark.django_db
class TestRefundViews:
    def test_admin_refunds_order(self, gateway, as_user, admin_user, client_user, editor):
        order = OrderFactory(client=client_user, editor=editor, held=True, status=OrderStatus.IN_PROGRESS)
        url = reverse("payments:initiate_refund", kwargs={"order_id": order.id})

        response = as_user(admin_user).post(url, {"reason": "admin_initiated"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["refund_amount"] == 750
        assert response.data["status"] == RefundStatus.COMPLETED

    def test_client_cannot_refund(self, gateway, as_user, held_order):
        url = reverse("payments:initiate_refund", kwargs={"order_id": held_order.id})

        response = as_user(held_order.client).post(url, {"reason": "client_request"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert Order.objects.get(pk=held_order.pk).phase == SettlementPhase.HELD

    def test_refund_of_released_order(self, gateway, as_user, admin_user, client_user, editor):
        order = OrderFactory(client=client_user, editor=editor, held=True)
        Order.objects.filter(pk=order.pk).update(phase=SettlementPhase.RELEASED, status=OrderStatus.COMPLETED)
        url = reverse("payments:initiate_refund", kwargs={"order_id": order.id})

        response = as_user(admin_user).post(url, {"reason": "admin_initiated"}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == "already_settled"
        gateway.process_refund.assert_not_called()

    def test_retry_scheduled_again(self, gateway, as_user, admin_user):
        gateway.process_refund.side_effect = GatewayUnavailableError("timeout")
        refund = RefundFactory(status=RefundStatus.FAILED, retry_count=1)
        url = reverse("payments:retry_refund", kwargs={"refund_id": refund.id})

        response = as_user(admin_user).post(url)

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["retry_count"] == 2

    def test_retry_of_non_failed_refund(self, gateway, as_user, admin_user):
        refund = RefundFactory(status=RefundStatus.COMPLETED)
        url = reverse("payments:retry_refund", kwargs={"refund_id": refund.id})

        response = as_user(admin_user).post(url)

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_force_wallet(self, gateway, as_user, admin_user):
        refund = RefundFactory(status=RefundStatus.FAILED, retry_count=1)
        url = reverse("payments:force_wallet_refund", kwargs={"refund_id": refund.id})

        response = as_user(admin_user).post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == RefundStatus.ADDED_TO_WALLET
        assert response.data["wallet_credited"] is True

    def test_gateway_refusal_still_succeeds_via_wallet(self, gateway, as_user, admin_user, held_order):
        gateway.process_refund.side_effect = RefundGatewayFailureError("declined")
        url = reverse("payments:initiate_refund", kwargs={"order_id": held_order.id})

        response = as_user(admin_user).post(url, {"reason": "admin_initiated"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["status"] == RefundStatus.ADDED_TO_WALLET


# =============================================================================
# Disputes
# =============================================================================


@pytest.mark.django_db
class TestDisputeViews:
    def test_party_opens_dispute(self, gateway, as_user, held_order):
        url = reverse("payments:open_dispute", kwargs={"order_id": held_order.id})

        response = as_user(held_order.client).post(url, {"reason": "Wrong cut"}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["phase"] == SettlementPhase.DISPUTED

    def test_outsider_forbidden(self, gateway, as_user, held_order, admin_user):
        url = reverse("payments:open_dispute", kwargs={"order_id": held_order.id})

        response = as_user(admin_user).post(url, {"reason": "Not mine"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_resolves_with_split(self, gateway, as_user, admin_user, held_order):
        as_user(held_order.client).post(
            reverse("payments:open_dispute", kwargs={"order_id": held_order.id}),
            {"reason": "Half done"},
            format="json",
        )
        url = reverse("payments:resolve_dispute", kwargs={"order_id": held_order.id})

        response = as_user(admin_user).post(url, {"resolution": "split", "splitPercent": 40}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["refund_amount"] == 400
        assert response.data["payout_amount"] == 540
        assert response.data["dispute_resolution"] == "split"

    def test_split_percent_out_of_range(self, gateway, as_user, admin_user, held_order):
        url = reverse("payments:resolve_dispute", kwargs={"order_id": held_order.id})

        response = as_user(admin_user).post(url, {"resolution": "split", "splitPercent": 100}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_resolve_undisputed_order(self, gateway, as_user, admin_user, held_order):
        url = reverse("payments:resolve_dispute", kwargs={"order_id": held_order.id})

        response = as_user(admin_user).post(url, {"resolution": "released_to_editor"}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT


# =============================================================================
# Read-only history
# =============================================================================


@pytest.mark.django_db
class TestDeliveryStatusView:
    def test_client_sees_token(self, as_user, submitted_order):
        url = reverse("payments:delivery_status", kwargs={"order_id": submitted_order.id})
        delivery = FinalDelivery.objects.get(order=submitted_order)

        response = as_user(submitted_order.client).get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["order_status"] == OrderStatus.SUBMITTED
        assert response.data["delivery"]["file_url"] == delivery.file_url
        assert response.data["download_token"] == delivery.download_token

    def test_editor_does_not_see_token(self, as_user, submitted_order):
        url = reverse("payments:delivery_status", kwargs={"order_id": submitted_order.id})

        response = as_user(submitted_order.editor).get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["download_token"] is None

    def test_no_delivery_yet(self, as_user, held_order):
        url = reverse("payments:delivery_status", kwargs={"order_id": held_order.id})

        response = as_user(held_order.client).get(url)

        assert response.data["delivery"] is None

    def test_outsider(self, as_user, submitted_order):
        url = reverse("payments:delivery_status", kwargs={"order_id": submitted_order.id})

        response = as_user(ClientFactory()).get(url)

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestRefundHistoryViews:
    def test_my_refunds_only_lists_own(self, as_user):
        mine = RefundFactory(status=RefundStatus.COMPLETED)
        RefundFactory(status=RefundStatus.COMPLETED)

        response = as_user(mine.client).get(reverse("payments:refund-my"))

        assert response.status_code == status.HTTP_200_OK
        assert [row["id"] for row in response.data["results"]] == [str(mine.id)]

    def test_my_refunds_status_filter(self, as_user):
        refund = RefundFactory(status=RefundStatus.FAILED, retry_count=1)

        response = as_user(refund.client).get(reverse("payments:refund-my"), {"status": "completed"})

        assert response.data["results"] == []

    def test_wallet(self, as_user, client_user):
        User.objects.filter(pk=client_user.pk).update(wallet_balance=750)

        response = as_user(User.objects.get(pk=client_user.pk)).get(reverse("payments:refund-wallet"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["balance"] == 750

    def test_order_refunds_for_editor(self, as_user):
        refund = RefundFactory(status=RefundStatus.COMPLETED)
        url = reverse("payments:refund-for-order", kwargs={"order_id": refund.order_id})

        response = as_user(refund.order.editor).get(url)

        assert response.status_code == status.HTTP_200_OK
        assert [row["id"] for row in response.data] == [str(refund.id)]

    def test_order_refunds_for_outsider(self, as_user, client_user):
        refund = RefundFactory(status=RefundStatus.COMPLETED)
        url = reverse("payments:refund-for-order", kwargs={"order_id": refund.order_id})

        response = as_user(client_user).get(url)

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_lists_all_with_filter(self, as_user, admin_user):
        failed = RefundFactory(status=RefundStatus.FAILED, retry_count=1)
        RefundFactory(status=RefundStatus.COMPLETED)

        response = as_user(admin_user).get(reverse("payments:refund-admin-all"), {"status": "failed"})

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 1
        assert response.data["results"][0]["id"] == str(failed.id)

    def test_client_cannot_list_all(self, as_user, client_user):
        response = as_user(client_user).get(reverse("payments:refund-admin-all"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_stats(self, as_user, admin_user):
        RefundFactory(status=RefundStatus.COMPLETED)
        RefundFactory(status=RefundStatus.COMPLETED)
        RefundFactory(status=RefundStatus.ADDED_TO_WALLET)

        response = as_user(admin_user).get(reverse("payments:refund-admin-stats"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["total"] == {"count": 3, "amount": 3000}
        assert response.data["by_status"]["completed"] == {"count": 2, "amount": 2000}
        assert response.data["by_status"]["failed"] == {"count": 0, "amount": 0}

    def test_client_cannot_see_stats(self, as_user, client_user):
        response = as_user(client_user).get(reverse("payments:refund-admin-stats"))

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestPaymentHistoryViews:
    def test_history_for_payer_and_payee(self, as_user):
        payment = PaymentFactory()
        PaymentFactory()
        url = reverse("payments:payment-history")

        for user in (payment.payer, payment.payee):
            response = as_user(user).get(url)
            assert [row["id"] for row in response.data["results"]] == [str(payment.id)]

    def test_history_type_filter(self, as_user):
        payment = PaymentFactory()

        response = as_user(payment.payer).get(reverse("payments:payment-history"), {"type": "refund"})

        assert response.data["results"] == []

    def test_stats_for_editor(self, as_user):
        payment = PaymentFactory()

        response = as_user(payment.payee).get(reverse("payments:payment-stats"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["total_transactions"] == 1
        assert response.data["total_amount"] == 1000
        assert response.data["total_earnings"] == 900
        assert response.data["total_fees"] == 100
        assert response.data["total_refunded"] == 0
        assert response.data["monthly"][0]["count"] == 1

    def test_detail_for_party(self, as_user):
        payment = PaymentFactory()
        url = reverse("payments:payment-detail", kwargs={"pk": payment.id})

        response = as_user(payment.payer).get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["transaction_id"] == payment.transaction_id

    def test_detail_hidden_from_outsider(self, as_user, client_user):
        payment = PaymentFactory()
        url = reverse("payments:payment-detail", kwargs={"pk": payment.id})

        response = as_user(client_user).get(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_admin_sees_any_payment(self, as_user, admin_user):
        payment = PaymentFactory()
        url = reverse("payments:payment-detail", kwargs={"pk": payment.id})

        assert as_user(admin_user).get(url).status_code == status.HTTP_200_OK

    def test_receipt(self, as_user):
        payment = PaymentFactory()
        url = reverse("payments:payment-receipt", kwargs={"pk": payment.id})

        response = as_user(payment.payer).get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["receipt_number"] == payment.receipt_number
        assert response.data["payee"]["email"] == payment.payee.email
        assert response.data["order"]["order_number"] == payment.order.order_number
        assert response.data["editor_earning"] == 900

    def test_anonymous(self, api_client):
        response = api_client.get(reverse("payments:payment-history"))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

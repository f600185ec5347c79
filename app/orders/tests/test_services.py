"""
Tests for OrderService workflow operations.
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from authentication.tests.factories import ClientFactory, EditorFactory
from core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from orders.models import FinalDelivery, Order
from orders.services import OrderService
from orders.states import OrderStatus, OrderType, SettlementPhase
from orders.tests.factories import OrderFactory


@pytest.mark.django_db
class TestCreateOrder:
    def test_gig_starts_pending_payment_without_window(self):
        client, editor = ClientFactory(), EditorFactory()

        order = OrderService.create_order(client=client, editor=editor, amount=1000)

        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.phase == SettlementPhase.UNPAID
        assert order.platform_fee == 100
        assert order.editor_earning == 900
        assert order.payment_expires_at is None

    def test_request_starts_new(self):
        order = OrderService.create_order(
            client=ClientFactory(),
            editor=EditorFactory(),
            amount=2500,
            order_type=OrderType.REQUEST,
        )

        assert order.status == OrderStatus.NEW
        assert order.payment_expires_at is None

    def test_below_minimum_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            OrderService.create_order(client=ClientFactory(), editor=EditorFactory(), amount=99)

        assert exc_info.value.error_code == "AMOUNT_TOO_SMALL"
        assert not Order.objects.exists()

    def test_same_party_rejected(self):
        user = EditorFactory()

        with pytest.raises(ValidationError):
            OrderService.create_order(client=user, editor=user, amount=1000)


@pytest.mark.django_db
class TestEditorWorkflow:
    def test_accept_funded_gig(self):
        order = OrderFactory(held=True, status=OrderStatus.NEW)

        OrderService.accept(order, order.editor)

        assert Order.objects.get(pk=order.pk).status == OrderStatus.ACCEPTED

    @freeze_time("2026-05-01 09:00:00")
    def test_accept_unfunded_request_awaits_payment(self):
        order = OrderFactory(order_type=OrderType.REQUEST, status=OrderStatus.NEW)

        OrderService.accept(order, order.editor)

        fresh = Order.objects.get(pk=order.pk)
        assert fresh.status == OrderStatus.AWAITING_PAYMENT
        assert fresh.payment_expires_at == timezone.now() + timedelta(hours=24)

    def test_only_editor_can_accept(self):
        order = OrderFactory(held=True, status=OrderStatus.NEW)

        with pytest.raises(PermissionDeniedError):
            OrderService.accept(order, order.client)

    def test_reject_unfunded(self):
        order = OrderFactory(order_type=OrderType.REQUEST, status=OrderStatus.NEW)

        OrderService.reject(order, order.editor, "Too busy")

        assert Order.objects.get(pk=order.pk).status == OrderStatus.REJECTED

    def test_start_work_requires_funds(self):
        order = OrderFactory(status=OrderStatus.ACCEPTED)

        with pytest.raises(ConflictError):
            OrderService.start_work(order, order.editor)

    def test_start_work(self):
        order = OrderFactory(held=True)

        OrderService.start_work(order, order.editor)

        assert Order.objects.get(pk=order.pk).status == OrderStatus.IN_PROGRESS

    def test_stale_instance_cannot_overwrite(self):
        order = OrderFactory(held=True, status=OrderStatus.NEW)
        stale = Order.objects.get(pk=order.pk)
        OrderService.accept(order, order.editor)

        with pytest.raises(ConflictError) as exc_info:
            OrderService.accept(stale, order.editor)

        assert exc_info.value.error_code == "ORDER_CHANGED"

    def test_invalid_transition(self):
        order = OrderFactory(held=True, status=OrderStatus.SUBMITTED)

        with pytest.raises(ConflictError) as exc_info:
            OrderService.start_work(order, order.editor)

        assert exc_info.value.error_code == "INVALID_STATE_TRANSITION"


@pytest.mark.django_db
class TestSubmitDelivery:
    @freeze_time("2026-05-01 09:00:00")
    def test_issues_token(self):
        order = OrderFactory(held=True, status=OrderStatus.IN_PROGRESS)

        delivery = OrderService.submit_delivery(order, order.editor, "https://cdn.example.com/f.mp4")

        assert Order.objects.get(pk=order.pk).status == OrderStatus.SUBMITTED
        assert len(delivery.download_token) == 64
        assert delivery.token_expires_at == timezone.now() + timedelta(days=7)

    def test_allowed_while_overdue(self):
        order = OrderFactory(held=True, phase=SettlementPhase.OVERDUE, status=OrderStatus.IN_PROGRESS)

        OrderService.submit_delivery(order, order.editor, "https://cdn.example.com/f.mp4")

        fresh = Order.objects.get(pk=order.pk)
        assert fresh.status == OrderStatus.SUBMITTED
        assert fresh.phase == SettlementPhase.OVERDUE

    def test_requires_funds(self):
        order = OrderFactory(status=OrderStatus.IN_PROGRESS)

        with pytest.raises(ConflictError):
            OrderService.submit_delivery(order, order.editor, "https://cdn.example.com/f.mp4")
        assert not FinalDelivery.objects.exists()


@pytest.mark.django_db
class TestRatingAndDeadline:
    def test_rate_submitted_order(self):
        order = OrderFactory(held=True, status=OrderStatus.SUBMITTED)

        rating = OrderService.rate_order(order, order.client, 4, "Nice")

        assert rating.score == 4

    def test_rate_twice_rejected(self):
        order = OrderFactory(held=True, status=OrderStatus.SUBMITTED)
        OrderService.rate_order(order, order.client, 4)

        with pytest.raises(ConflictError):
            OrderService.rate_order(order, order.client, 5)

    def test_rate_score_range(self):
        order = OrderFactory(held=True, status=OrderStatus.SUBMITTED)

        with pytest.raises(ValidationError):
            OrderService.rate_order(order, order.client, 6)

    def test_extend_deadline_max_three(self):
        order = OrderFactory(held=True, deadline=timezone.now() + timedelta(days=1))

        for day in range(2, 5):
            OrderService.extend_deadline(order, order.editor, timezone.now() + timedelta(days=day))

        with pytest.raises(ValidationError) as exc_info:
            OrderService.extend_deadline(order, order.editor, timezone.now() + timedelta(days=9))

        assert exc_info.value.error_code == "MAX_EXTENSIONS"
        assert Order.objects.get(pk=order.pk).deadline_extension_count == 3

    def test_extend_deadline_must_be_later(self):
        order = OrderFactory(held=True, deadline=timezone.now() + timedelta(days=3))

        with pytest.raises(ValidationError):
            OrderService.extend_deadline(order, order.editor, timezone.now() + timedelta(days=1))

"""
Pytest fixtures for payment tests.

The payment gateway is never called for real: ``gateway`` patches
``get_payment_gateway`` everywhere it is imported and returns a mock
whose methods answer like a healthy gateway. Tests override single
methods to simulate failures:

    def test_refund_falls_back_to_wallet(gateway, held_order):
        gateway.process_refund.side_effect = RefundGatewayFailureError("declined")
        ...
"""

from unittest.mock import MagicMock, patch

import pytest

from authentication.tests.factories import AdminFactory, ClientFactory, EditorFactory
from orders.states import OrderStatus
from orders.tests.factories import FinalDeliveryFactory, OrderFactory, RatingFactory
from payments.adapters import (
    GatewayOrder,
    GatewayPayout,
    GatewayRefund,
    PaymentVerification,
)
from payments.tests.factories import PayoutAccountFactory

GATEWAY_LOOKUPS = (
    "payments.services.escrow_ledger.get_payment_gateway",
    "payments.services.refund_service.get_payment_gateway",
    "payments.webhooks.views.get_payment_gateway",
)


@pytest.fixture
def gateway():
    """A mock gateway that accepts every call."""
    mock = MagicMock(name="gateway")
    mock.is_configured.return_value = True
    mock.create_order.side_effect = lambda amount, currency, correlation_id, notes=None: (
        GatewayOrder(
            gateway_order_id=f"pi_{correlation_id[:8]}",
            amount=amount,
            currency=currency,
            client_secret="pi_secret_test",
        )
    )
    mock.verify_payment.return_value = PaymentVerification(valid=True, details={"status": "succeeded"})
    mock.process_refund.return_value = GatewayRefund(refund_id="re_test_1", status="succeeded")
    mock.create_payout.return_value = GatewayPayout(payout_id="tr_test_1", status="processing")
    mock.verify_webhook_signature.return_value = True

    patchers = [patch(target, return_value=mock) for target in GATEWAY_LOOKUPS]
    for patcher in patchers:
        patcher.start()
    yield mock
    for patcher in patchers:
        patcher.stop()


# =============================================================================
# Parties
# =============================================================================


@pytest.fixture
def client_user(db):
    return ClientFactory()


@pytest.fixture
def editor(db):
    """KYC-verified editor with a payable account."""
    user = EditorFactory()
    PayoutAccountFactory(user=user)
    return user


@pytest.fixture
def unverified_editor(db):
    """Editor without KYC; releases accrue to pending payout."""
    from authentication.models import KycStatus

    return EditorFactory(kyc_status=KycStatus.PENDING)


@pytest.fixture
def admin_user(db):
    return AdminFactory()


# =============================================================================
# Orders
# =============================================================================


@pytest.fixture
def unpaid_order(db, client_user, editor):
    """1000-unit gig awaiting payment."""
    return OrderFactory(client=client_user, editor=editor)


@pytest.fixture
def processing_order(db, client_user, editor):
    return OrderFactory(client=client_user, editor=editor, processing=True)


@pytest.fixture
def held_order(db, client_user, editor):
    """Funded order the editor has accepted."""
    return OrderFactory(client=client_user, editor=editor, held=True)


@pytest.fixture
def submitted_order(db, client_user, editor):
    """Funded, delivered and rated order ready for download confirmation."""
    order = OrderFactory(client=client_user, editor=editor, held=True, status=OrderStatus.SUBMITTED)
    FinalDeliveryFactory(order=order)
    RatingFactory(order=order)
    return order

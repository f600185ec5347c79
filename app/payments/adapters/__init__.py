"""
Payment gateway adapters.

All gateway calls go through an adapter implementing PaymentGateway.

Usage:
    from payments.adapters import get_payment_gateway

    gateway = get_payment_gateway()
    order = gateway.create_order(1000, "inr", correlation_id=str(order.id))
"""

from payments.adapters.base import (
    GatewayOrder,
    GatewayPayout,
    GatewayRefund,
    PaymentGateway,
    PaymentVerification,
    from_minor_units,
    to_minor_units,
)
from payments.adapters.stripe_adapter import (
    IdempotencyKeyGenerator,
    StripeGatewayAdapter,
    sign_payment,
)


def get_payment_gateway() -> PaymentGateway:
    return StripeGatewayAdapter()


__all__ = [
    "GatewayOrder",
    "GatewayPayout",
    "GatewayRefund",
    "IdempotencyKeyGenerator",
    "PaymentGateway",
    "PaymentVerification",
    "StripeGatewayAdapter",
    "from_minor_units",
    "get_payment_gateway",
    "sign_payment",
    "to_minor_units",
]

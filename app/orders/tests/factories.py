"""
Factory Boy factories for order models.

Usage:
    from orders.tests.factories import OrderFactory

    unpaid = OrderFactory()
    funded = OrderFactory(held=True)
    working = OrderFactory(held=True, status=OrderStatus.IN_PROGRESS)
"""

import secrets
from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from authentication.tests.factories import ClientFactory, EditorFactory
from orders.models import FinalDelivery, Order, Rating
from orders.states import OrderStatus, OrderType, SettlementPhase


class OrderFactory(factory.django.DjangoModelFactory):
    """
    Factory for Order.

    Defaults to an unpaid 1000-unit gig at a 10% fee. Fee and earning are
    computed by Order.save() from the snapshot percentage.

    Traits:
        processing: gateway order created, awaiting capture
        held: funds captured and held in escrow (status ACCEPTED)
    """

    class Meta:
        model = Order
        skip_postgeneration_save = True

    client = factory.SubFactory(ClientFactory)
    editor = factory.SubFactory(EditorFactory)
    order_type = OrderType.GIG
    title = factory.Sequence(lambda n: f"Wedding highlight reel {n}")
    amount = 1000
    platform_fee_percentage = Decimal("10.00")
    status = OrderStatus.PENDING_PAYMENT
    phase = SettlementPhase.UNPAID

    class Params:
        processing = factory.Trait(
            phase=SettlementPhase.PAYMENT_PROCESSING,
            gateway_order_id=factory.Sequence(lambda n: f"pi_test_{n:06d}"),
        )
        held = factory.Trait(
            phase=SettlementPhase.HELD,
            status=OrderStatus.ACCEPTED,
            gateway_order_id=factory.Sequence(lambda n: f"pi_held_{n:06d}"),
            gateway_payment_id=factory.Sequence(lambda n: f"ch_held_{n:06d}"),
            escrow_held_at=factory.LazyFunction(timezone.now),
        )


class RatingFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Rating

    order = factory.SubFactory(OrderFactory, held=True, status=OrderStatus.SUBMITTED)
    score = 5
    review = "Great edit"


class FinalDeliveryFactory(factory.django.DjangoModelFactory):
    """Final delivery with a freshly issued 7-day token."""

    class Meta:
        model = FinalDelivery

    order = factory.SubFactory(OrderFactory, held=True, status=OrderStatus.SUBMITTED)
    file_url = "https://cdn.example.com/deliveries/final.mp4"
    download_token = factory.LazyFunction(lambda: secrets.token_hex(32))
    token_expires_at = factory.LazyFunction(lambda: timezone.now() + timedelta(days=7))

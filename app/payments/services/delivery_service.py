"""
Final download confirmation: the client's release trigger.

The client confirms by typing CONFIRM and presenting the download token
issued when the editor submitted. The order must already be rated.
Only then is the escrow released.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService
from orders.models import FinalDelivery, Rating
from orders.states import SETTLED_PHASES, OrderStatus
from payments.exceptions import AlreadySettledError, DeliveryConfirmationError
from payments.services.escrow_ledger import EscrowLedger, ReleaseResult

if TYPE_CHECKING:
    from authentication.models import User
    from orders.models import Order

CONFIRM_TEXT = "CONFIRM"
RELEASE_TRIGGER = "download_confirmed"


class DeliveryService(BaseService):
    """Client confirmation of the final delivery."""

    @classmethod
    def confirm_download(
        cls,
        order: Order,
        user: User,
        confirm_text: str,
        token: str,
    ) -> ReleaseResult:
        """
        Confirm the download and release the escrow.

        Raises:
            DeliveryConfirmationError: NOT_ORDER_CLIENT, CONFIRM_TEXT_MISMATCH,
                NOT_DELIVERED, TOKEN_INVALID or RATING_REQUIRED
            AlreadySettledError: order already released or refunded
            plus everything EscrowLedger.release raises
        """
        details = {"order_id": str(order.id)}
        if user.pk != order.client_id:
            raise DeliveryConfirmationError(
                "Only the order's client can confirm the download",
                error_code="NOT_ORDER_CLIENT",
                details=details,
            )
        if confirm_text != CONFIRM_TEXT:
            raise DeliveryConfirmationError(
                f'Type "{CONFIRM_TEXT}" to confirm the download',
                error_code="CONFIRM_TEXT_MISMATCH",
                details=details,
            )

        if order.phase in SETTLED_PHASES or order.is_terminal:
            raise AlreadySettledError(
                f"Order {order.order_number} is already settled",
                details={**details, "phase": order.phase, "status": order.status},
            )

        delivery = FinalDelivery.objects.filter(order=order).first()
        if delivery is None or order.status != OrderStatus.SUBMITTED:
            raise DeliveryConfirmationError(
                "The order has no submitted delivery",
                error_code="NOT_DELIVERED",
                details={**details, "status": order.status},
            )
        if not delivery.is_token_valid(token):
            raise DeliveryConfirmationError(
                "Download token is invalid or expired",
                error_code="TOKEN_INVALID",
                details=details,
            )
        if not Rating.objects.filter(order=order).exists():
            raise DeliveryConfirmationError(
                "Rate the order before confirming the download",
                error_code="RATING_REQUIRED",
                details=details,
            )

        result = EscrowLedger.release(order, trigger=RELEASE_TRIGGER)
        FinalDelivery.objects.filter(pk=delivery.pk).update(confirmed_at=timezone.now())
        cls.get_logger().info(
            "Download confirmed for order %s",
            order.order_number,
            extra={"order_id": str(order.id), "user_id": user.pk},
        )
        return result

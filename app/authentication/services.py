"""
Balance mutations for marketplace users.

Every method issues a single conditional UPDATE with an F() expression,
so the read-modify-write happens inside the database and concurrent
credits from webhooks, sweeps and request handlers never overwrite each
other. Callers that hold a User instance must refresh it to observe the
new value.

Usage:
    from authentication.services import BalanceService

    BalanceService.credit_wallet(client.id, refund.refund_amount)
    BalanceService.accrue_pending_payout(editor.id, order.editor_earning)
"""

from __future__ import annotations

from django.db.models import F

from authentication.models import User
from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService


class BalanceService(BaseService):
    """Atomic increments of the User balance columns."""

    @classmethod
    def _increment(cls, user_id, field: str, amount: int) -> None:
        if amount < 0:
            raise ValidationError(
                "Balance increments must be non-negative",
                error_code="NEGATIVE_AMOUNT",
                details={"field": field, "amount": amount},
            )
        if amount == 0:
            return
        updated = User.objects.filter(pk=user_id).update(**{field: F(field) + amount})
        if not updated:
            raise NotFoundError(
                f"User {user_id} not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": str(user_id)},
            )
        cls.get_logger().info(
            "Incremented %s for user %s by %s",
            field,
            user_id,
            amount,
            extra={"user_id": str(user_id), "field": field, "amount": amount},
        )

    @classmethod
    def credit_wallet(cls, user_id, amount: int) -> None:
        """Credit refunded money to the user's in-platform wallet."""
        cls._increment(user_id, "wallet_balance", amount)

    @classmethod
    def accrue_pending_payout(cls, user_id, amount: int) -> None:
        """Defer an editor earning until a payout can be made."""
        cls._increment(user_id, "pending_payout_balance", amount)

    @classmethod
    def record_earning(cls, user_id, amount: int) -> None:
        """Add a released order's earning to the editor's lifetime total."""
        cls._increment(user_id, "total_earnings", amount)

    @classmethod
    def record_withdrawal(cls, user_id, amount: int) -> None:
        """Record a completed payout against the editor's lifetime total."""
        cls._increment(user_id, "total_withdrawn", amount)

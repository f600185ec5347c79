"""
Fee and refund arithmetic for orders.

Amounts are integer major currency units. Percentages may carry two
decimal places. Every rounding uses ROUND_HALF_UP, and the editor
earning is always derived by subtraction so that
``platform_fee + editor_earning == amount`` holds exactly.

Usage:
    from orders.money import split_amount, refund_amount_for

    split = split_amount(1000, Decimal("10"))
    split.platform_fee   # 100
    split.editor_earning # 900

    refund_amount_for(1000, 75)  # 750
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from django.conf import settings

from orders.states import OrderStatus

HUNDRED = Decimal("100")

# Workflow status at refund time -> key into settings.REFUND_POLICY
REFUND_STAGE_BY_STATUS = {
    OrderStatus.PENDING_PAYMENT: "before_accepted",
    OrderStatus.NEW: "before_accepted",
    OrderStatus.AWAITING_PAYMENT: "before_accepted",
    OrderStatus.ACCEPTED: "accepted_no_work",
    OrderStatus.IN_PROGRESS: "work_in_progress",
    OrderStatus.SUBMITTED: "submitted",
    OrderStatus.COMPLETED: "after_delivery",
}


class FeeSplit(NamedTuple):
    platform_fee: int
    editor_earning: int


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_decimal(percentage) -> Decimal:
    return percentage if isinstance(percentage, Decimal) else Decimal(str(percentage))


def calculate_platform_fee(amount: int, percentage) -> int:
    """Platform fee for ``amount`` at ``percentage`` percent, rounded half up."""
    return round_half_up(Decimal(amount) * _as_decimal(percentage) / HUNDRED)


def split_amount(amount: int, percentage) -> FeeSplit:
    fee = calculate_platform_fee(amount, percentage)
    return FeeSplit(platform_fee=fee, editor_earning=amount - fee)


def current_platform_fee_percentage() -> Decimal:
    """The fee percentage new orders snapshot at creation."""
    return _as_decimal(settings.PLATFORM_FEE_PERCENT)


def refund_percentage_for(status: str) -> int:
    """
    Stage-based refund percentage for an order in ``status``.

    Statuses without a stage (disputed, rejected, cancelled, expired)
    map to 0; dispute resolution passes an explicit percentage instead.
    """
    stage = REFUND_STAGE_BY_STATUS.get(status)
    if stage is None:
        return 0
    return int(settings.REFUND_POLICY[stage])


def refund_amount_for(amount: int, percentage) -> int:
    """``percentage`` percent of ``amount``, rounded half up."""
    return round_half_up(Decimal(amount) * _as_decimal(percentage) / HUNDRED)

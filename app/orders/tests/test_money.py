"""
Tests for fee and refund arithmetic.
"""

from decimal import Decimal

import pytest

from orders.money import (
    calculate_platform_fee,
    refund_amount_for,
    refund_percentage_for,
    split_amount,
)
from orders.states import OrderStatus


class TestFeeSplit:
    def test_ten_percent_of_thousand(self):
        split = split_amount(1000, Decimal("10"))

        assert split.platform_fee == 100
        assert split.editor_earning == 900

    @pytest.mark.parametrize("amount", [1, 99, 100, 105, 333, 1000, 1999, 123457])
    @pytest.mark.parametrize("percentage", ["0", "7.5", "10", "12.34", "50"])
    def test_fee_plus_earning_equals_amount(self, amount, percentage):
        split = split_amount(amount, Decimal(percentage))

        assert split.platform_fee + split.editor_earning == amount
        assert split.platform_fee >= 0
        assert split.editor_earning >= 0

    def test_half_rounds_up(self):
        # 10% of 105 is 10.5
        assert calculate_platform_fee(105, 10) == 11

    def test_accepts_plain_numbers(self):
        assert calculate_platform_fee(1000, 12.5) == 125


class TestRefundAmounts:
    def test_seventy_five_percent_of_thousand(self):
        assert refund_amount_for(1000, 75) == 750

    def test_half_rounds_up(self):
        assert refund_amount_for(999, 50) == 500

    def test_zero_percent(self):
        assert refund_amount_for(1000, 0) == 0


class TestStageTable:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (OrderStatus.PENDING_PAYMENT, 100),
            (OrderStatus.NEW, 100),
            (OrderStatus.ACCEPTED, 100),
            (OrderStatus.IN_PROGRESS, 75),
            (OrderStatus.SUBMITTED, 50),
            (OrderStatus.COMPLETED, 0),
            (OrderStatus.DISPUTED, 0),
            (OrderStatus.CANCELLED, 0),
        ],
    )
    def test_default_policy(self, status, expected):
        assert refund_percentage_for(status) == expected

    def test_policy_comes_from_settings(self, settings):
        settings.REFUND_POLICY = {**settings.REFUND_POLICY, "work_in_progress": 60}

        assert refund_percentage_for(OrderStatus.IN_PROGRESS) == 60

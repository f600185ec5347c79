"""
Payment model: append-only settlement records.

One Payment row is written for each money movement the ledger settles:
an ESCROW_RELEASE when funds go to the editor and a REFUND when they go
back to the client. Rows are immutable once COMPLETED.
"""

from __future__ import annotations

import secrets
import time

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.exceptions import ConflictError
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PaymentRecordStatus, PaymentType

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits)) or "0"


def generate_transaction_id() -> str:
    """TXN-{base36 epoch milliseconds}-{6 hex chars}, uppercased."""
    millis = int(time.time() * 1000)
    return f"TXN-{_base36(millis)}-{secrets.token_hex(3)}".upper()


def generate_receipt_number() -> str:
    """RCP-{YYYYMM}-{5 digits}."""
    return f"RCP-{timezone.now():%Y%m}-{secrets.randbelow(100000):05d}"


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Immutable record of a settled money movement.

    Fields:
        order: Order the money belongs to
        payer/payee: Who pays and who receives
        payment_type: ESCROW_RELEASE or REFUND
        amount/platform_fee/editor_earning: Money moved
        transaction_id/receipt_number: Unique human-facing identifiers
        order_snapshot: Order money fields at settlement time
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Settled order",
    )
    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments_made",
        help_text="User the money comes from",
    )
    payee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments_received",
        help_text="User the money goes to",
    )
    payment_type = models.CharField(
        max_length=20,
        choices=PaymentType.choices,
        db_index=True,
    )
    amount = models.PositiveBigIntegerField(help_text="Amount moved")
    platform_fee = models.PositiveBigIntegerField(default=0)
    editor_earning = models.PositiveBigIntegerField(default=0)
    status = models.CharField(
        max_length=20,
        choices=PaymentRecordStatus.choices,
        default=PaymentRecordStatus.COMPLETED,
    )
    transaction_id = models.CharField(
        max_length=40,
        unique=True,
        default=generate_transaction_id,
        editable=False,
    )
    receipt_number = models.CharField(
        max_length=20,
        unique=True,
        default=generate_receipt_number,
        editable=False,
    )
    order_snapshot = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order", "payment_type"], name="payment_order_type_idx"),
        ]

    def __str__(self) -> str:
        return f"Payment({self.transaction_id}, {self.payment_type}, {self.amount})"

    def save(self, *args, **kwargs):
        if (
            not self._state.adding
            and Payment.objects.filter(pk=self.pk, status=PaymentRecordStatus.COMPLETED).exists()
        ):
            raise ConflictError(
                "Completed payment records are immutable",
                error_code="PAYMENT_IMMUTABLE",
                details={"transaction_id": self.transaction_id},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ConflictError(
            "Payment records cannot be deleted",
            error_code="PAYMENT_IMMUTABLE",
            details={"transaction_id": self.transaction_id},
        )

    @classmethod
    def snapshot_order(cls, order) -> dict:
        return {
            "order_number": order.order_number,
            "amount": order.amount,
            "platform_fee_percentage": str(order.platform_fee_percentage),
            "platform_fee": order.platform_fee,
            "editor_earning": order.editor_earning,
            "phase": order.phase,
            "status": order.status,
            "gateway_payment_id": order.gateway_payment_id,
        }

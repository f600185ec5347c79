"""
Refund model for money returned to clients.

A Refund is created by EscrowLedger.refund once the order's phase has
moved to REFUNDED. It carries a denormalised snapshot of the original
payment so it can be processed and audited without the order.

Usage:
    refund.start_processing()      # initiated/failed -> processing
    refund.save()
    refund.complete("re_123", "succeeded")
    refund.save()
"""

from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedModelMixin
from core.models import BaseModel
from payments.state_machines import (
    RefundInitiator,
    RefundMethod,
    RefundReason,
    RefundStatus,
)

RETRY_BACKOFF_BASE_MINUTES = 5


def stall_window() -> timedelta:
    return timedelta(minutes=settings.REFUND_STALL_MINUTES)


class Refund(UUIDPrimaryKeyMixin, VersionedModelMixin, BaseModel):
    """
    Money returned to a client for an order.

    State Flow:
        INITIATED -> PROCESSING -> COMPLETED
        INITIATED -> PROCESSING -> ADDED_TO_WALLET
        INITIATED -> PROCESSING -> FAILED -> PROCESSING (retry)
        FAILED -> ADDED_TO_WALLET
        INITIATED | FAILED -> CANCELLED

    Fields:
        order: Refunded order
        client: Recipient of the money
        refund_amount/refund_percentage: What is returned
        original_*: Snapshot of the captured payment
        gateway_refund_id/gateway_refund_status: Gateway result
        retry_count/max_retries/next_retry_at: Retry schedule
        wallet_credited/wallet_transaction_id: Wallet fallback result
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Order being refunded",
    )
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="User receiving the refund",
    )

    # ==========================================================================
    # Amount & Reason
    # ==========================================================================

    refund_amount = models.PositiveBigIntegerField(
        help_text="Refund amount in major currency units",
    )
    refund_percentage = models.PositiveSmallIntegerField(
        help_text="Percentage of the order amount refunded",
    )
    reason = models.CharField(
        max_length=30,
        choices=RefundReason.choices,
        help_text="Why the order was refunded",
    )
    reason_details = models.TextField(blank=True, default="")
    refund_method = models.CharField(
        max_length=20,
        choices=RefundMethod.choices,
        default=RefundMethod.ORIGINAL_PAYMENT,
        help_text="Where the money went",
    )
    initiated_by = models.CharField(
        max_length=10,
        choices=RefundInitiator.choices,
        default=RefundInitiator.SYSTEM,
    )

    # ==========================================================================
    # Original Payment Snapshot
    # ==========================================================================

    original_gateway_order_id = models.CharField(max_length=255, blank=True, default="")
    original_gateway_payment_id = models.CharField(max_length=255, blank=True, default="")
    original_amount = models.PositiveBigIntegerField(
        help_text="Order amount at refund time",
    )
    original_paid_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.INITIATED,
        choices=RefundStatus.choices,
        db_index=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    # ==========================================================================
    # Gateway & Wallet Results
    # ==========================================================================

    gateway_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway refund id",
    )
    gateway_refund_status = models.CharField(max_length=30, blank=True, default="")
    wallet_credited = models.BooleanField(default=False)
    wallet_transaction_id = models.CharField(max_length=64, blank=True, default="")

    # ==========================================================================
    # Retry & Failure
    # ==========================================================================

    retry_count = models.PositiveSmallIntegerField(default=0)
    max_retries = models.PositiveSmallIntegerField(default=3)
    next_retry_at = models.DateTimeField(null=True, blank=True, db_index=True)
    failure_reason = models.TextField(blank=True, default="")
    failure_code = models.CharField(max_length=50, blank=True, default="")
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "next_retry_at"], name="refund_retry_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(refund_amount__gt=0),
                name="refund_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(refund_percentage__lte=100),
                name="refund_percentage_max",
            ),
            models.UniqueConstraint(
                fields=["order"],
                condition=~Q(status__in=[RefundStatus.FAILED, RefundStatus.CANCELLED]),
                name="refund_one_active_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.status}, {self.refund_amount})"

    @property
    def can_retry(self) -> bool:
        return self.status == RefundStatus.FAILED and self.retry_count < self.max_retries

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    @property
    def is_stalled(self) -> bool:
        """Claimed for processing but no gateway refund was recorded in time."""
        return (
            self.status == RefundStatus.PROCESSING
            and not self.gateway_refund_id
            and self.updated_at <= timezone.now() - stall_window()
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[RefundStatus.INITIATED, RefundStatus.FAILED],
        target=RefundStatus.PROCESSING,
    )
    def start_processing(self):
        """Transition: INITIATED | FAILED -> PROCESSING"""
        self.next_retry_at = None

    @transition(
        field=status,
        source=RefundStatus.PROCESSING,
        target=RefundStatus.PROCESSING,
        conditions=[lambda refund: refund.is_stalled],
    )
    def resume_processing(self):
        """
        Transition: PROCESSING -> PROCESSING for a stalled claim.

        retry_count is unchanged so the gateway call reuses the attempt's
        idempotency key.
        """

    @transition(
        field=status,
        source=RefundStatus.PROCESSING,
        target=RefundStatus.COMPLETED,
    )
    def complete(self, gateway_refund_id: str | None = None, gateway_status: str = "succeeded"):
        """Transition: PROCESSING -> COMPLETED"""
        if gateway_refund_id:
            self.gateway_refund_id = gateway_refund_id
        self.gateway_refund_status = gateway_status
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=RefundStatus.PROCESSING,
        target=RefundStatus.FAILED,
    )
    def fail(self, reason: str, code: str = ""):
        """
        Transition: PROCESSING -> FAILED

        Schedules the next retry with backoff of 5^retry_count minutes.
        """
        now = timezone.now()
        self.retry_count += 1
        self.failure_reason = reason
        self.failure_code = code
        self.failed_at = now
        self.next_retry_at = now + timedelta(
            minutes=RETRY_BACKOFF_BASE_MINUTES**self.retry_count
        )

    @transition(
        field=status,
        source=[RefundStatus.INITIATED, RefundStatus.PROCESSING, RefundStatus.FAILED],
        target=RefundStatus.ADDED_TO_WALLET,
    )
    def credit_wallet(self, transaction_id: str):
        """Transition: INITIATED | PROCESSING | FAILED -> ADDED_TO_WALLET"""
        self.refund_method = RefundMethod.WALLET
        self.wallet_credited = True
        self.wallet_transaction_id = transaction_id
        self.next_retry_at = None
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[RefundStatus.INITIATED, RefundStatus.FAILED],
        target=RefundStatus.CANCELLED,
    )
    def cancel(self):
        """Transition: INITIATED | FAILED -> CANCELLED"""
        self.next_retry_at = None

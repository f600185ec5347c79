"""
Order models.

Order is the aggregate the settlement lifecycle operates on. It carries
a money snapshot taken at creation, a workflow ``status`` and an
internal settlement ``phase``. Both are django-fsm fields: transitions
validate legality in memory, and every write goes through
``Order.objects.compare_and_swap`` so that a writer holding a stale
instance loses instead of overwriting.

Usage:
    from orders.models import Order

    order = Order.objects.create(client=client, editor=editor, amount=1000)
    order.platform_fee     # 100 at a 10% platform fee
    order.editor_earning   # 900

    expected = (order.phase, order.status)
    order.release_escrow()
    order.complete()
    Order.objects.compare_and_swap(
        order, phase=expected[0], status=expected[1], fields=[...]
    )
"""

from __future__ import annotations

import hmac
import secrets
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import GET_STATE, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedModelMixin
from core.models import BaseModel
from orders.money import current_platform_fee_percentage, split_amount
from orders.states import (
    FUNDED_PHASES,
    PHASE_PROJECTIONS,
    TERMINAL_STATUSES,
    DisputeResolution,
    EscrowStatus,
    OrderStatus,
    OrderType,
    PaymentStatus,
    PayoutStatus,
    SettlementPhase,
)

PROJECTION_FIELDS = (
    "payment_status",
    "escrow_status",
    "chat_disabled",
    "chat_disabled_reason",
    "overdue_refunded",
)

OPEN_STATUSES = [
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.NEW,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.ACCEPTED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.SUBMITTED,
    OrderStatus.REJECTED,
    OrderStatus.DISPUTED,
]

OVERDUE_REFUND_REASON = "overdue"


def generate_order_number() -> str:
    """ORD-{year}-{4 digits}, retried until unused."""
    year = timezone.now().year
    for _ in range(20):
        candidate = f"ORD-{year}-{secrets.randbelow(10000):04d}"
        if not Order.objects.filter(order_number=candidate).exists():
            return candidate
    # Four digits are exhausted for the year; widen rather than loop forever.
    return f"ORD-{year}-{secrets.randbelow(10**8):08d}"


def _refund_target(order: Order, refund_amount: int, reason: str) -> str:
    if order.phase == SettlementPhase.OVERDUE and reason == OVERDUE_REFUND_REASON:
        return SettlementPhase.OVERDUE_REFUNDED
    return SettlementPhase.REFUNDED


def _paid_status_target(order: Order) -> str:
    if order.status == OrderStatus.PENDING_PAYMENT:
        return OrderStatus.NEW
    return OrderStatus.ACCEPTED


class OrderQuerySet(models.QuerySet):
    def compare_and_swap(
        self,
        order: Order,
        *,
        phase: str,
        status: str,
        fields: list[str] | tuple[str, ...],
    ) -> bool:
        """
        Persist ``fields`` of ``order`` only if the row still has the
        expected phase and status.

        Projection fields are recomputed from the in-memory phase and
        always written. Returns False when another writer got there
        first; the row is untouched in that case.
        """
        order.apply_phase_projection()
        now = timezone.now()
        values = {name: getattr(order, name) for name in {*fields, *PROJECTION_FIELDS}}
        values["updated_at"] = now
        values["version"] = F("version") + 1

        updated = self.filter(pk=order.pk, phase=phase, status=status).update(**values)
        if not updated:
            return False

        order.updated_at = now
        order.version = self.filter(pk=order.pk).values_list("version", flat=True).get()
        return True

    def open(self):
        return self.exclude(status__in=TERMINAL_STATUSES)


class Order(UUIDPrimaryKeyMixin, VersionedModelMixin, BaseModel):
    """
    A client's order with an editor.

    Money fields are fixed at creation: ``platform_fee_percentage`` is a
    snapshot of the platform setting, and the fee and editor earning are
    derived from it once. A database constraint keeps
    ``platform_fee + editor_earning == amount``.

    Fields:
        order_number: Human-readable identifier (ORD-2026-0042)
        client/editor: The two parties, fixed after creation
        amount: Order price in major currency units
        phase: Settlement phase (internal authority for money fields)
        status: Workflow status
        payment_status/escrow_status/chat_disabled*/overdue_refunded:
            projections of ``phase``
        gateway_*: Correlation ids with the payment gateway
        version: Optimistic locking counter
    """

    # ==========================================================================
    # Identity & Parties
    # ==========================================================================

    order_number = models.CharField(
        max_length=32,
        unique=True,
        editable=False,
        help_text="Human-readable order number",
    )
    order_type = models.CharField(
        max_length=10,
        choices=OrderType.choices,
        default=OrderType.GIG,
        help_text="How the order was created",
    )
    title = models.CharField(
        max_length=200,
        blank=True,
        help_text="Short description of the work",
    )
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="client_orders",
        help_text="User paying for the order",
    )
    editor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="editor_orders",
        help_text="User doing the work",
    )

    # ==========================================================================
    # Money Snapshot
    # ==========================================================================

    amount = models.PositiveBigIntegerField(
        help_text="Order price in major currency units",
    )
    platform_fee_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("50"))],
        help_text="Platform fee percentage snapshotted at creation",
    )
    platform_fee = models.PositiveBigIntegerField(
        help_text="Platform fee in major currency units",
    )
    editor_earning = models.PositiveBigIntegerField(
        help_text="amount minus platform_fee",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    phase = FSMField(
        default=SettlementPhase.UNPAID,
        choices=SettlementPhase.choices,
        db_index=True,
        help_text="Settlement phase",
    )
    status = FSMField(
        default=OrderStatus.PENDING_PAYMENT,
        choices=OrderStatus.choices,
        db_index=True,
        help_text="Workflow status",
    )

    # Projections of phase
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        editable=False,
        help_text="Derived from phase",
    )
    escrow_status = models.CharField(
        max_length=20,
        choices=EscrowStatus.choices,
        default=EscrowStatus.NONE,
        editable=False,
        help_text="Derived from phase",
    )
    chat_disabled = models.BooleanField(
        default=False,
        editable=False,
        help_text="Derived from phase",
    )
    chat_disabled_reason = models.CharField(
        max_length=20,
        blank=True,
        default="",
        editable=False,
        help_text="Derived from phase",
    )
    overdue_refunded = models.BooleanField(
        default=False,
        editable=False,
        help_text="Derived from phase",
    )

    # ==========================================================================
    # Gateway Correlation
    # ==========================================================================

    gateway_order_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway order/intent id for the current payment attempt",
    )
    gateway_payment_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway payment id once captured",
    )
    gateway_signature = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Client-supplied payment signature",
    )
    gateway_payout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway payout/transfer id",
    )

    # ==========================================================================
    # Timing
    # ==========================================================================

    deadline = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Delivery deadline",
    )
    deadline_extension_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of deadline extensions granted",
    )
    payment_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Unpaid orders are cancelled after this time",
    )
    escrow_held_at = models.DateTimeField(null=True, blank=True)
    escrow_released_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")
    overdue_at = models.DateTimeField(null=True, blank=True)
    grace_ends_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="End of the overdue grace period",
    )

    # ==========================================================================
    # Settlement Outcome
    # ==========================================================================

    refund_amount = models.PositiveBigIntegerField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    refund_reason = models.CharField(max_length=50, blank=True, default="")
    payout_status = models.CharField(
        max_length=20,
        choices=PayoutStatus.choices,
        default=PayoutStatus.NOT_STARTED,
        help_text="Editor payout progress after release",
    )
    payout_amount = models.PositiveBigIntegerField(null=True, blank=True)

    # ==========================================================================
    # Dispute
    # ==========================================================================

    dispute_reason = models.TextField(blank=True, default="")
    disputed_at = models.DateTimeField(null=True, blank=True)
    dispute_resolved_at = models.DateTimeField(null=True, blank=True)
    dispute_resolution = models.CharField(
        max_length=30,
        choices=DisputeResolution.choices,
        blank=True,
        default="",
    )

    objects = OrderQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "payment_expires_at"], name="order_unpaid_expiry_idx"),
            models.Index(fields=["phase", "deadline"], name="order_phase_deadline_idx"),
            models.Index(fields=["phase", "grace_ends_at"], name="order_phase_grace_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gte=1),
                name="order_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(platform_fee=F("amount") - F("editor_earning")),
                name="order_fee_split_consistent",
            ),
            models.CheckConstraint(
                condition=Q(deadline_extension_count__lte=3),
                name="order_deadline_extensions_max",
            ),
            models.CheckConstraint(
                condition=~Q(escrow_status=EscrowStatus.HELD)
                | (Q(gateway_payment_id__isnull=False) & Q(payment_status=PaymentStatus.ESCROW)),
                name="order_held_escrow_has_payment",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status}/{self.phase})"

    def save(self, *args, **kwargs):
        if self._state.adding:
            if not self.order_number:
                self.order_number = generate_order_number()
            if self.platform_fee_percentage is None:
                self.platform_fee_percentage = current_platform_fee_percentage()
            if self.platform_fee is None or self.editor_earning is None:
                split = split_amount(self.amount, self.platform_fee_percentage)
                self.platform_fee = split.platform_fee
                self.editor_earning = split.editor_earning
        self.apply_phase_projection()
        super().save(*args, **kwargs)

    def apply_phase_projection(self) -> None:
        """Write the legacy money flags from the current phase."""
        projection = PHASE_PROJECTIONS[self.phase]
        self.payment_status = projection.payment_status
        self.escrow_status = projection.escrow_status
        self.chat_disabled_reason = projection.chat_disabled_reason
        self.chat_disabled = bool(projection.chat_disabled_reason)
        self.overdue_refunded = projection.overdue_refunded

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_funded(self) -> bool:
        """Money is held by the platform (held, overdue or disputed)."""
        return self.phase in FUNDED_PHASES

    @property
    def is_overdue(self) -> bool:
        return self.overdue_at is not None

    # ==========================================================================
    # Phase Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=phase,
        source=[SettlementPhase.UNPAID, SettlementPhase.PAYMENT_FAILED],
        target=SettlementPhase.PAYMENT_PROCESSING,
    )
    def begin_payment(self, gateway_order_id: str):
        """
        Transition: UNPAID | PAYMENT_FAILED -> PAYMENT_PROCESSING

        A retry replaces the gateway order id of the failed attempt.
        """
        self.gateway_order_id = gateway_order_id

    @transition(
        field=phase,
        source=SettlementPhase.PAYMENT_PROCESSING,
        target=SettlementPhase.PAYMENT_FAILED,
    )
    def fail_payment(self):
        """Transition: PAYMENT_PROCESSING -> PAYMENT_FAILED"""

    @transition(
        field=phase,
        source=[SettlementPhase.PAYMENT_PROCESSING, SettlementPhase.PAYMENT_FAILED],
        target=SettlementPhase.HELD,
    )
    def hold_escrow(self, payment_id: str, signature: str = ""):
        """
        Transition: PAYMENT_PROCESSING | PAYMENT_FAILED -> HELD

        PAYMENT_FAILED is a valid source because a capture webhook can
        arrive after a client-side verification failure.
        """
        self.gateway_payment_id = payment_id
        self.gateway_signature = signature
        self.escrow_held_at = timezone.now()

    @transition(
        field=phase,
        source=SettlementPhase.HELD,
        target=SettlementPhase.OVERDUE,
    )
    def mark_overdue(self, grace_hours: int):
        """Transition: HELD -> OVERDUE"""
        now = timezone.now()
        self.overdue_at = now
        self.grace_ends_at = now + timedelta(hours=grace_hours)

    @transition(
        field=phase,
        source=[SettlementPhase.HELD, SettlementPhase.OVERDUE],
        target=SettlementPhase.DISPUTED,
    )
    def open_dispute(self, reason: str):
        """Transition: HELD | OVERDUE -> DISPUTED"""
        self.dispute_reason = reason
        self.disputed_at = timezone.now()

    @transition(
        field=phase,
        source=list(FUNDED_PHASES),
        target=SettlementPhase.RELEASED,
    )
    def release_escrow(self):
        """Transition: HELD | OVERDUE | DISPUTED -> RELEASED"""
        self.escrow_released_at = timezone.now()
        self.payout_amount = self.editor_earning

    @transition(
        field=phase,
        source=list(FUNDED_PHASES),
        target=GET_STATE(
            _refund_target,
            states=[SettlementPhase.REFUNDED, SettlementPhase.OVERDUE_REFUNDED],
        ),
    )
    def refund_escrow(self, refund_amount: int, reason: str):
        """
        Transition: HELD | OVERDUE | DISPUTED -> REFUNDED
                    OVERDUE -> OVERDUE_REFUNDED (reason "overdue")
        """
        self.refund_amount = refund_amount
        self.refund_reason = reason
        self.refunded_at = timezone.now()

    # ==========================================================================
    # Status Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[OrderStatus.PENDING_PAYMENT, OrderStatus.AWAITING_PAYMENT],
        target=GET_STATE(
            _paid_status_target,
            states=[OrderStatus.NEW, OrderStatus.ACCEPTED],
        ),
    )
    def mark_paid(self):
        """
        Transition: PENDING_PAYMENT -> NEW (gig awaiting editor acceptance)
                    AWAITING_PAYMENT -> ACCEPTED (request already accepted)
        """

    @transition(field=status, source=OrderStatus.NEW, target=OrderStatus.ACCEPTED)
    def accept(self):
        """Transition: NEW -> ACCEPTED"""

    @transition(field=status, source=OrderStatus.NEW, target=OrderStatus.AWAITING_PAYMENT)
    def await_payment(self, window_hours: int):
        """Transition: NEW -> AWAITING_PAYMENT"""
        self.payment_expires_at = timezone.now() + timedelta(hours=window_hours)

    @transition(field=status, source=OrderStatus.NEW, target=OrderStatus.REJECTED)
    def reject(self):
        """Transition: NEW -> REJECTED"""

    @transition(field=status, source=OrderStatus.ACCEPTED, target=OrderStatus.IN_PROGRESS)
    def start_work(self):
        """Transition: ACCEPTED -> IN_PROGRESS"""

    @transition(
        field=status,
        source=[OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS],
        target=OrderStatus.SUBMITTED,
    )
    def submit(self):
        """Transition: ACCEPTED | IN_PROGRESS -> SUBMITTED"""

    @transition(
        field=status,
        source=[OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS, OrderStatus.SUBMITTED],
        target=OrderStatus.DISPUTED,
    )
    def escalate(self):
        """Transition: ACCEPTED | IN_PROGRESS | SUBMITTED -> DISPUTED"""

    @transition(
        field=status,
        source=[
            OrderStatus.NEW,
            OrderStatus.ACCEPTED,
            OrderStatus.IN_PROGRESS,
            OrderStatus.SUBMITTED,
            OrderStatus.DISPUTED,
        ],
        target=OrderStatus.COMPLETED,
    )
    def complete(self):
        """Transition: any funded working status -> COMPLETED"""
        self.completed_at = timezone.now()

    @transition(field=status, source=OPEN_STATUSES, target=OrderStatus.CANCELLED)
    def cancel(self, reason: str = ""):
        """Transition: any non-terminal status -> CANCELLED"""
        self.cancelled_at = timezone.now()
        self.cancellation_reason = reason


class Rating(UUIDPrimaryKeyMixin, BaseModel):
    """
    Client's rating of a delivered order.

    A rating must exist before the client can confirm the final download
    and release the escrow.
    """

    order = models.OneToOneField(
        Order,
        on_delete=models.CASCADE,
        related_name="rating",
        help_text="Rated order",
    )
    score = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(5)],
        help_text="Score from 1 to 5",
    )
    review = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(score__gte=1) & Q(score__lte=5),
                name="rating_score_range",
            ),
        ]

    def __str__(self) -> str:
        return f"Rating({self.order_id}, {self.score})"


class FinalDelivery(UUIDPrimaryKeyMixin, BaseModel):
    """
    The editor's final deliverable and its download token.

    The token is issued on submission and must be presented, unexpired,
    by the client to confirm the download.
    """

    order = models.OneToOneField(
        Order,
        on_delete=models.CASCADE,
        related_name="final_delivery",
        help_text="Delivered order",
    )
    file_url = models.URLField(
        max_length=1000,
        help_text="Location of the delivered file",
    )
    download_token = models.CharField(
        max_length=64,
        help_text="Secret token required to confirm the download",
    )
    token_expires_at = models.DateTimeField(
        help_text="Token is rejected after this time",
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "final deliveries"

    def __str__(self) -> str:
        return f"FinalDelivery({self.order_id})"

    def issue_token(self, ttl_days: int) -> None:
        self.download_token = secrets.token_hex(32)
        self.token_expires_at = timezone.now() + timedelta(days=ttl_days)

    def is_token_valid(self, token: str) -> bool:
        """Constant-time comparison plus expiry check."""
        if not token or not self.download_token:
            return False
        if not hmac.compare_digest(self.download_token, token):
            return False
        return timezone.now() < self.token_expires_at

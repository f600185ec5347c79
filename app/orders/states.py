"""
State enums for orders.

Two state machines live on an Order:

Workflow status (who is doing what):
    gig:           pending_payment → new → accepted → in_progress → submitted → completed
    request/brief: new → awaiting_payment → accepted → in_progress → submitted → completed
    any open status → cancelled | disputed
    new → rejected

Settlement phase (where the money is):
    unpaid → payment_processing → held → released
    payment_processing → payment_failed → payment_processing (retry)
    held → overdue → overdue_refunded
    held/overdue → disputed → released | refunded
    held/disputed → refunded

The phase is the single authority for the money fields. payment_status,
escrow_status and the chat flags are projections written from
PHASE_PROJECTIONS and never set independently.
"""

from __future__ import annotations

from typing import NamedTuple

from django.db import models


class OrderType(models.TextChoices):
    """How the order was created."""

    GIG = "gig", "Gig"
    REQUEST = "request", "Request"
    BRIEF = "brief", "Brief"


class OrderStatus(models.TextChoices):
    """
    Workflow status of an order.

    Terminal states: COMPLETED, CANCELLED, EXPIRED
    """

    PENDING_PAYMENT = "pending_payment", "Pending Payment"
    NEW = "new", "New"
    AWAITING_PAYMENT = "awaiting_payment", "Awaiting Payment"
    ACCEPTED = "accepted", "Accepted"
    IN_PROGRESS = "in_progress", "In Progress"
    SUBMITTED = "submitted", "Submitted"
    COMPLETED = "completed", "Completed"
    REJECTED = "rejected", "Rejected"
    CANCELLED = "cancelled", "Cancelled"
    DISPUTED = "disputed", "Disputed"
    EXPIRED = "expired", "Expired"


TERMINAL_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.EXPIRED}
)

PRE_PAYMENT_STATUSES = frozenset(
    {OrderStatus.PENDING_PAYMENT, OrderStatus.NEW, OrderStatus.AWAITING_PAYMENT}
)

# A request in NEW must be accepted before it can be paid.
PAYABLE_STATUSES = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.AWAITING_PAYMENT})


class SettlementPhase(models.TextChoices):
    """
    Internal settlement phase.

    Terminal phases: RELEASED, REFUNDED, OVERDUE_REFUNDED
    """

    UNPAID = "unpaid", "Unpaid"
    PAYMENT_PROCESSING = "payment_processing", "Payment Processing"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    HELD = "held", "Held in Escrow"
    OVERDUE = "overdue", "Overdue"
    DISPUTED = "disputed", "Disputed"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    OVERDUE_REFUNDED = "overdue_refunded", "Refunded (Overdue)"


FUNDED_PHASES = frozenset(
    {SettlementPhase.HELD, SettlementPhase.OVERDUE, SettlementPhase.DISPUTED}
)

SETTLED_PHASES = frozenset(
    {
        SettlementPhase.RELEASED,
        SettlementPhase.REFUNDED,
        SettlementPhase.OVERDUE_REFUNDED,
    }
)


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    ESCROW = "escrow", "In Escrow"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


class EscrowStatus(models.TextChoices):
    NONE = "none", "None"
    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    DISPUTED = "disputed", "Disputed"


class PayoutStatus(models.TextChoices):
    """
    Editor payout progress after release.

    PENDING means the earning was accrued to the editor's pending-payout
    balance because no payout could be made yet.
    """

    NOT_STARTED = "not_started", "Not Started"
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class ChatDisabledReason(models.TextChoices):
    OVERDUE = "overdue", "Overdue"
    REFUNDED = "refunded", "Refunded"


class DisputeResolution(models.TextChoices):
    RELEASED_TO_EDITOR = "released_to_editor", "Released to Editor"
    REFUNDED_TO_CLIENT = "refunded_to_client", "Refunded to Client"
    SPLIT = "split", "Split"


class PhaseProjection(NamedTuple):
    payment_status: str
    escrow_status: str
    chat_disabled_reason: str
    overdue_refunded: bool


PHASE_PROJECTIONS: dict[str, PhaseProjection] = {
    SettlementPhase.UNPAID: PhaseProjection(PaymentStatus.PENDING, EscrowStatus.NONE, "", False),
    SettlementPhase.PAYMENT_PROCESSING: PhaseProjection(
        PaymentStatus.PROCESSING, EscrowStatus.NONE, "", False
    ),
    SettlementPhase.PAYMENT_FAILED: PhaseProjection(
        PaymentStatus.FAILED, EscrowStatus.NONE, "", False
    ),
    SettlementPhase.HELD: PhaseProjection(PaymentStatus.ESCROW, EscrowStatus.HELD, "", False),
    SettlementPhase.OVERDUE: PhaseProjection(
        PaymentStatus.ESCROW, EscrowStatus.HELD, ChatDisabledReason.OVERDUE, False
    ),
    SettlementPhase.DISPUTED: PhaseProjection(
        PaymentStatus.ESCROW, EscrowStatus.DISPUTED, "", False
    ),
    SettlementPhase.RELEASED: PhaseProjection(
        PaymentStatus.RELEASED, EscrowStatus.RELEASED, "", False
    ),
    SettlementPhase.REFUNDED: PhaseProjection(
        PaymentStatus.REFUNDED, EscrowStatus.REFUNDED, "", False
    ),
    SettlementPhase.OVERDUE_REFUNDED: PhaseProjection(
        PaymentStatus.REFUNDED, EscrowStatus.REFUNDED, ChatDisabledReason.REFUNDED, True
    ),
}


__all__ = [
    "OrderType",
    "OrderStatus",
    "TERMINAL_STATUSES",
    "PRE_PAYMENT_STATUSES",
    "PAYABLE_STATUSES",
    "SettlementPhase",
    "FUNDED_PHASES",
    "SETTLED_PHASES",
    "PaymentStatus",
    "EscrowStatus",
    "PayoutStatus",
    "ChatDisabledReason",
    "DisputeResolution",
    "PhaseProjection",
    "PHASE_PROJECTIONS",
]

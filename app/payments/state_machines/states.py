"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration.
Order phase and status enums live in orders.states.

State Machines Overview:

Refund States:
    initiated → processing → completed
    initiated → processing → added_to_wallet (gateway refused, wallet fallback)
    initiated → processing → failed → processing (retry)
    failed → added_to_wallet (retries exhausted or admin override)
    initiated/failed → cancelled

Payment Record States:
    pending → completed (immutable afterwards)
    pending → failed

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed (can retry)
"""

from django.db import models


class RefundStatus(models.TextChoices):
    """
    States for the Refund model lifecycle.

    Terminal states: COMPLETED, ADDED_TO_WALLET, CANCELLED
    FAILED is retryable until max_retries is reached.
    """

    INITIATED = "initiated", "Initiated"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    ADDED_TO_WALLET = "added_to_wallet", "Added to Wallet"


class RefundReason(models.TextChoices):
    ORDER_REJECTED = "order_rejected", "Order Rejected"
    ORDER_CANCELLED = "order_cancelled", "Order Cancelled"
    EDITOR_NO_RESPONSE = "editor_no_response", "Editor No Response"
    CLIENT_REQUEST = "client_request", "Client Request"
    DISPUTE_RESOLVED = "dispute_resolved", "Dispute Resolved"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    DUPLICATE_PAYMENT = "duplicate_payment", "Duplicate Payment"
    LATE_CAPTURE = "payment_after_cancellation", "Payment After Cancellation"
    ADMIN_INITIATED = "admin_initiated", "Admin Initiated"
    OVERDUE = "overdue", "Overdue"
    OTHER = "other", "Other"


class RefundMethod(models.TextChoices):
    ORIGINAL_PAYMENT = "original_payment", "Original Payment Method"
    WALLET = "wallet", "Wallet"


class RefundInitiator(models.TextChoices):
    SYSTEM = "system", "System"
    ADMIN = "admin", "Admin"
    CLIENT = "client", "Client"
    EDITOR = "editor", "Editor"


class PaymentType(models.TextChoices):
    """Settlement record kinds."""

    ESCROW_RELEASE = "escrow_release", "Escrow Release"
    REFUND = "refund", "Refund"


class PaymentRecordStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class PayoutAccountStatus(models.TextChoices):
    """
    Verification status of an editor's payout account.

    Only VERIFIED accounts with payouts enabled receive payouts.
    """

    PENDING = "pending", "Pending"
    VERIFIED = "verified", "Verified"
    REJECTED = "rejected", "Rejected"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "RefundStatus",
    "RefundReason",
    "RefundMethod",
    "RefundInitiator",
    "PaymentType",
    "PaymentRecordStatus",
    "PayoutAccountStatus",
    "WebhookEventStatus",
]

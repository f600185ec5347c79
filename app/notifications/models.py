"""
Notification models.

- NotificationKind: Settlement events users are told about
- Notification: Individual in-app notification sent to a user

Design Decisions:
    - Actor uses SET_NULL (preserve notification when actor deleted)
    - GenericForeignKey links a notification to its source order or refund
    - idempotency_key is unique when set, so an event notifies a
      recipient at most once even when the emitting transition is retried
"""

from __future__ import annotations

from django.conf import settings
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.db import models

from core.models import BaseModel


class NotificationKind(models.TextChoices):
    """Settlement lifecycle events that produce a notification."""

    ESCROW_HELD = "escrow_held", "Payment held in escrow"
    PAYMENT_FAILED = "payment_failed", "Payment failed"
    ORDER_COMPLETED = "order_completed", "Order completed"
    PAYOUT_PENDING = "payout_pending", "Payout pending"
    PAYOUT_PROCESSED = "payout_processed", "Payout processed"
    PAYOUT_FAILED = "payout_failed", "Payout failed"
    REFUND_PROCESSED = "refund_processed", "Refund processed"
    REFUND_TO_WALLET = "refund_to_wallet", "Refund credited to wallet"
    ORDER_EXPIRED = "order_expired", "Order expired"
    ORDER_OVERDUE = "order_overdue", "Order overdue"
    ORDER_AUTO_REFUNDED = "order_auto_refunded", "Order auto-refunded"
    DISPUTE_OPENED = "dispute_opened", "Dispute opened"
    DISPUTE_RESOLVED = "dispute_resolved", "Dispute resolved"


class Notification(BaseModel):
    """
    Individual notification record for a user.

    Notifications are immutable once created apart from ``is_read``.

    Fields:
        recipient: User receiving the notification
        actor: Optional user who triggered the notification
        kind: NotificationKind value
        title/body: Rendered text
        data: JSON context (order id, amounts)
        content_type/object_id/source_object: Generic FK to source entity
        is_read: Whether recipient has read this notification
        idempotency_key: Unique per emitted event when set
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        db_index=True,
        help_text="User receiving this notification",
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="triggered_notifications",
        help_text="User who triggered this notification (optional)",
    )
    kind = models.CharField(
        max_length=40,
        choices=NotificationKind.choices,
        db_index=True,
        help_text="Settlement event this notification reports",
    )
    title = models.CharField(
        max_length=500,
        help_text="Rendered notification title",
    )
    body = models.TextField(
        blank=True,
        default="",
        help_text="Rendered notification body",
    )
    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Context data (order id, amounts)",
    )
    content_type = models.ForeignKey(
        ContentType,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        help_text="Content type of source object",
    )
    object_id = models.CharField(
        max_length=36,
        null=True,
        blank=True,
        help_text="ID of source object (supports UUID and integer PKs)",
    )
    source_object = GenericForeignKey("content_type", "object_id")
    is_read = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether recipient has read this notification",
    )
    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Idempotency key to prevent duplicate notifications",
    )

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                name="notif_idempotency_key_unique",
                condition=models.Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        read_status = "read" if self.is_read else "unread"
        return f"Notification({self.kind}) -> {self.recipient_id} [{read_status}]"

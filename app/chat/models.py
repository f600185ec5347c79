"""
Per-order chat models.

Every order has one conversation between its client and editor. The
settlement lifecycle posts SYSTEM messages into it on each money
transition; TEXT messages come from the parties.

Models:
    Conversation: One per order, tracks last activity
    Message: Text or system event message

System Message Content Format:
    {"event": "<event_type>", "data": {...}}
    See SystemMessageEvent for event types.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class MessageType(models.TextChoices):
    """
    Type of message content.

    TEXT: User-authored text message
    SYSTEM: Auto-generated settlement event message
    """

    TEXT = "text", "Text"
    SYSTEM = "system", "System"


class SystemMessageEvent:
    """
    System message event types.

    Events:
        ESCROW_HELD: Payment captured and held
            data: {"amount": int, "payment_id": str}
        ORDER_COMPLETED: Escrow released to the editor
            data: {"editor_earning": int, "trigger": str}
        ORDER_REFUNDED: Escrow refunded to the client
            data: {"refund_amount": int, "percentage": int, "reason": str}
        ORDER_EXPIRED: Unpaid order cancelled by timeout
            data: {"reason": str}
        ORDER_OVERDUE: Deadline passed, grace period started
            data: {"grace_ends_at": str}
        DISPUTE_OPENED: A party raised a dispute
            data: {"raised_by_id": str, "reason": str}
        DISPUTE_RESOLVED: Admin resolved a dispute
            data: {"resolution": str}
    """

    ESCROW_HELD = "escrow_held"
    ORDER_COMPLETED = "order_completed"
    ORDER_REFUNDED = "order_refunded"
    ORDER_EXPIRED = "order_expired"
    ORDER_OVERDUE = "order_overdue"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"


class Conversation(BaseModel):
    """
    Conversation between the two parties of an order.

    Fields:
        order: The order this conversation belongs to
        last_message_at: Timestamp of the newest message
    """

    order = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="conversation",
        help_text="Order this conversation belongs to",
    )
    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of the most recent message",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-created_at"]

    def __str__(self) -> str:
        return f"Conversation(order={self.order_id})"


class Message(BaseModel):
    """
    A message within a conversation.

    Fields:
        conversation: Conversation this message belongs to
        sender: User who sent the message (NULL for system messages)
        message_type: text or system
        content: Message text or system event JSON
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )
    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        db_index=True,
        help_text="Type of message (text or system)",
    )
    content = models.TextField(
        help_text="Message content (text for user messages, JSON for system messages)",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["conversation", "created_at", "id"],
                name="chat_msg_conv_cursor_idx",
            ),
        ]

    def __str__(self) -> str:
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"{sender_str}: {preview}"

    @property
    def is_system_message(self) -> bool:
        return self.message_type == MessageType.SYSTEM

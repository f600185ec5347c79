"""
Chat services for order conversations.

OrderChatService is the only writer of system messages. Text messages
are rejected while the order's chat is disabled (overdue or refunded).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from django.utils import timezone

from chat.models import Conversation, Message, MessageType
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from authentication.models import User
    from orders.models import Order


class OrderChatService(BaseService):
    """Posts messages into the conversation attached to an order."""

    @classmethod
    def get_conversation(cls, order: Order) -> Conversation:
        conversation, _ = Conversation.objects.get_or_create(order=order)
        return conversation

    @classmethod
    def post_system_message(cls, order: Order, event: str, data: dict | None = None) -> Message:
        """
        Create a system message for a settlement event.

        Args:
            order: Order whose conversation receives the message
            event: SystemMessageEvent value
            data: Event-specific JSON payload
        """
        conversation = cls.get_conversation(order)
        now = timezone.now()
        message = Message.objects.create(
            conversation=conversation,
            sender=None,
            message_type=MessageType.SYSTEM,
            content=json.dumps({"event": event, "data": data or {}}),
        )
        Conversation.objects.filter(pk=conversation.pk).update(last_message_at=now)
        cls.get_logger().debug(
            "Posted system message %s for order %s", event, order.id
        )
        return message

    @classmethod
    def send_message(cls, order: Order, sender: User, content: str) -> ServiceResult[Message]:
        """
        Send a text message from one of the order's parties.

        Error codes:
            NOT_PARTICIPANT: Sender is neither client nor editor
            CHAT_DISABLED: Order chat is closed
            EMPTY_MESSAGE: Content is blank
        """
        if sender.pk not in (order.client_id, order.editor_id):
            return ServiceResult.failure(
                "Only the order's client and editor can chat",
                error_code="NOT_PARTICIPANT",
            )
        if order.chat_disabled:
            return ServiceResult.failure(
                f"Chat is disabled for this order ({order.chat_disabled_reason})",
                error_code="CHAT_DISABLED",
            )
        content = content.strip()
        if not content:
            return ServiceResult.failure("Message cannot be empty", error_code="EMPTY_MESSAGE")

        conversation = cls.get_conversation(order)
        message = Message.objects.create(
            conversation=conversation,
            sender=sender,
            message_type=MessageType.TEXT,
            content=content,
        )
        Conversation.objects.filter(pk=conversation.pk).update(last_message_at=message.created_at)
        return ServiceResult.success(message)

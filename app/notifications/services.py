"""
Notification creation service.

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=order.editor,
        kind=NotificationKind.ESCROW_HELD,
        title="Payment secured",
        body=f"{order.order_number} is funded and ready to start.",
        source_object=order,
        idempotency_key=f"escrow_held:{order.id}:{order.editor_id}",
    )
    if not result and result.error_code == "DUPLICATE":
        ...  # already notified
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.contrib.contenttypes.models import ContentType
from django.db import IntegrityError, transaction

from core.services import BaseService, ServiceResult
from notifications.models import Notification

if TYPE_CHECKING:
    from django.db.models import Model

    from authentication.models import User


class NotificationService(BaseService):
    """Creates in-app notifications with idempotency protection."""

    @classmethod
    def create_notification(
        cls,
        recipient: User,
        kind: str,
        title: str,
        body: str = "",
        data: dict | None = None,
        actor: User | None = None,
        source_object: Model | None = None,
        idempotency_key: str | None = None,
    ) -> ServiceResult[Notification]:
        """
        Create a new notification for a user.

        Returns:
            ServiceResult with the created Notification

        Error codes:
            DUPLICATE: Notification with this idempotency_key already exists
        """
        if idempotency_key and Notification.objects.filter(idempotency_key=idempotency_key).exists():
            cls.get_logger().info(
                "Duplicate notification prevented: idempotency_key=%s", idempotency_key
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        source_fields = {}
        if source_object is not None:
            source_fields = {
                "content_type": ContentType.objects.get_for_model(source_object),
                "object_id": str(source_object.pk),
            }

        try:
            # Savepoint so a lost race on the unique key leaves the caller's
            # transaction usable.
            with transaction.atomic():
                notification = Notification.objects.create(
                    recipient=recipient,
                    actor=actor,
                    kind=kind,
                    title=title,
                    body=body,
                    data=data or {},
                    idempotency_key=idempotency_key,
                    **source_fields,
                )
        except IntegrityError:
            cls.get_logger().info(
                "Duplicate notification prevented on insert: idempotency_key=%s",
                idempotency_key,
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        cls.get_logger().info(
            "Created notification %s for user %s",
            notification.kind,
            recipient.id,
            extra={"notification_id": notification.id, "kind": kind},
        )
        return ServiceResult.success(notification)

    @classmethod
    def mark_read(cls, recipient: User, notification_ids: list[int] | None = None) -> int:
        """Mark the recipient's notifications read; all of them when ids is None."""
        queryset = Notification.objects.filter(recipient=recipient, is_read=False)
        if notification_ids is not None:
            queryset = queryset.filter(id__in=notification_ids)
        return queryset.update(is_read=True)

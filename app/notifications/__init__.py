"""
Notifications app for in-app settlement notifications.

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=order.client,
        kind=NotificationKind.REFUND_PROCESSED,
        title="Refund processed",
        idempotency_key=f"refund_processed:{order.id}:{order.client_id}",
    )
"""

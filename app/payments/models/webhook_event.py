"""
WebhookEvent model for payment gateway webhook tracking.

Every verified webhook delivery is stored here before it is processed,
keyed by the gateway's event id. A duplicate delivery finds the existing
row and is acknowledged without being processed again.

Usage:
    event, created = WebhookEvent.objects.get_or_create(
        event_id="evt_123",
        defaults={"event_type": "payment_intent.succeeded", "payload": payload},
    )
    if created:
        process_webhook_event.delay(str(event.id))
"""

from __future__ import annotations

from django.utils import timezone
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import WebhookEventStatus

WEBHOOK_MAX_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Gateway webhook event stored for idempotent processing.

    Fields:
        event_id: Gateway event id (evt_xxx), unique
        event_type: Gateway event type
        payload: Full event JSON
        status: Processing status
        processed_at: When processing succeeded
        error_message: Last processing error
        retry_count: Number of processing attempts
    """

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway event id - unique constraint for idempotency",
    )
    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Gateway event type (e.g. 'payment_intent.succeeded')",
    )
    payload = models.JSONField(help_text="Full webhook payload")
    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True, default="")
    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "retry_count"], name="webhook_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return self.status == WebhookEventStatus.FAILED and self.retry_count < WEBHOOK_MAX_RETRIES

    @property
    def data_object(self) -> dict:
        """The event's ``data.object`` dict, empty when the payload lacks one."""
        data = self.payload.get("data") if isinstance(self.payload, dict) else None
        obj = data.get("object") if isinstance(data, dict) else None
        return obj if isinstance(obj, dict) else {}

    # Callers save after each of these.

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

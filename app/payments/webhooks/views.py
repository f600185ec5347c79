"""
Webhook endpoint for the payment gateway.

The view verifies the signature, stores the event once per gateway
event id and queues it for processing. It returns 200 for every valid
event, known or not, so the gateway stops redelivering.
"""

from __future__ import annotations

import json
import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import get_payment_gateway
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Gateway-Signature"


@csrf_exempt
@require_POST
def payment_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue a gateway webhook event.

    Returns:
        200: Event accepted (new or duplicate)
        400: Missing or invalid signature, or malformed body
    """
    payload = request.body
    signature = request.headers.get(SIGNATURE_HEADER, "")

    if not signature:
        logger.warning("Webhook received without %s header", SIGNATURE_HEADER)
        return HttpResponse("Missing signature", status=400)

    if not get_payment_gateway().verify_webhook_signature(payload, signature):
        logger.warning("Webhook signature verification failed")
        return HttpResponse("Invalid signature", status=400)

    try:
        event_data = json.loads(payload)
    except (ValueError, UnicodeDecodeError):
        logger.warning("Webhook body is not valid JSON")
        return HttpResponse("Invalid payload", status=400)

    event_id = event_data.get("id") if isinstance(event_data, dict) else None
    event_type = event_data.get("type") if isinstance(event_data, dict) else None
    if not event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        "Received webhook: %s",
        event_type,
        extra={"event_id": event_id, "event_type": event_type},
    )

    webhook_event, created = WebhookEvent.objects.get_or_create(
        event_id=event_id,
        defaults={"event_type": event_type, "payload": event_data},
    )
    if not created and webhook_event.status in (
        WebhookEventStatus.PROCESSED,
        WebhookEventStatus.PROCESSING,
    ):
        logger.info(
            "Duplicate webhook %s (%s), not requeued",
            event_id,
            webhook_event.status,
            extra={"event_id": event_id},
        )
        return HttpResponse("Already received", status=200)

    from payments.tasks import process_webhook_event

    try:
        process_webhook_event.delay(str(webhook_event.id))
    except Exception:
        # Stored as PENDING; retry_failed_webhooks or the gateway's
        # redelivery picks it up.
        logger.exception(
            "Failed to queue webhook",
            extra={"event_id": event_id, "webhook_event_id": str(webhook_event.id)},
        )

    return HttpResponse("Accepted", status=200)

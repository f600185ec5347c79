"""
Webhook event handlers for payment gateway events.

Handlers are registered by event type and return a ServiceResult. A
failure result marks the WebhookEvent failed so retry_failed_webhooks
picks it up again; unknown event types succeed without doing anything.

Handled events:
    payment_intent.succeeded       -> EscrowLedger.confirm_captured
    payment_intent.payment_failed  -> EscrowLedger.mark_payment_failed
    charge.refunded                -> RefundService.mark_gateway_completed
    transfer.created               -> EscrowLedger.mark_payout_processed
    transfer.reversed              -> EscrowLedger.mark_payout_reversed

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from core.services import ServiceResult
from payments.exceptions import AlreadySettledError, PaymentError, StaleTransitionError
from payments.models import WebhookEvent
from payments.services import EscrowLedger, RefundService

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """Decorator registering a handler for ``event_type``."""

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """Route an event to its handler; unknown types succeed as a no-op."""
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)
    if not handler:
        logger.info(
            "No handler registered for event type: %s",
            webhook_event.event_type,
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        "Dispatching %s to handler",
        webhook_event.event_type,
        extra={"event_id": webhook_event.event_id},
    )
    return handler(webhook_event)


def _object_id(webhook_event: WebhookEvent) -> str | None:
    return webhook_event.data_object.get("id")


def _missing_object(webhook_event: WebhookEvent) -> ServiceResult:
    logger.error(
        "%s: could not extract object id",
        webhook_event.event_type,
        extra={"event_id": webhook_event.event_id},
    )
    return ServiceResult.failure(
        "Could not extract object id from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


def _run_ledger_call(webhook_event: WebhookEvent, call: Callable[[], object]) -> ServiceResult:
    """
    Run a ledger call for a webhook.

    AlreadySettledError is a duplicate or late delivery and counts as
    success. A lost race or any other domain error fails the event so it
    is retried.
    """
    try:
        return ServiceResult.success(call())
    except AlreadySettledError as exc:
        logger.info(
            "%s: order already settled, ignoring",
            webhook_event.event_type,
            extra={"event_id": webhook_event.event_id, **exc.details},
        )
        return ServiceResult.success(None)
    except (StaleTransitionError, PaymentError) as exc:
        logger.warning(
            "%s: %s",
            webhook_event.event_type,
            exc.message,
            extra={"event_id": webhook_event.event_id, "error_code": exc.error_code},
        )
        return ServiceResult.from_exception(exc)


# =============================================================================
# Payment Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """Hold funds for a captured payment. Idempotent with client confirmation."""
    intent_id = _object_id(webhook_event)
    if not intent_id:
        return _missing_object(webhook_event)
    payment_id = webhook_event.data_object.get("latest_charge") or intent_id
    return _run_ledger_call(
        webhook_event,
        lambda: EscrowLedger.confirm_captured(intent_id, payment_id),
    )


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    intent_id = _object_id(webhook_event)
    if not intent_id:
        return _missing_object(webhook_event)
    error = webhook_event.data_object.get("last_payment_error") or {}
    reason = error.get("message", "") if isinstance(error, dict) else ""
    return _run_ledger_call(
        webhook_event,
        lambda: EscrowLedger.mark_payment_failed(intent_id, reason=reason),
    )


# =============================================================================
# Refund & Payout Handlers
# =============================================================================


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """Complete pending refunds listed on the charge."""
    refunds = webhook_event.data_object.get("refunds") or {}
    completed = []
    for gateway_refund in refunds.get("data", []):
        if gateway_refund.get("status") != "succeeded":
            continue
        result = RefundService.mark_gateway_completed(gateway_refund["id"], "succeeded")
        if result:
            completed.append(gateway_refund["id"])
        else:
            logger.info(
                "charge.refunded: %s",
                result.error,
                extra={"event_id": webhook_event.event_id, "gateway_refund_id": gateway_refund["id"]},
            )
    return ServiceResult.success(completed)


@register_handler("transfer.created")
def handle_transfer_created(webhook_event: WebhookEvent) -> ServiceResult:
    transfer_id = _object_id(webhook_event)
    if not transfer_id:
        return _missing_object(webhook_event)
    return ServiceResult.success(EscrowLedger.mark_payout_processed(transfer_id))


@register_handler("transfer.reversed")
def handle_transfer_reversed(webhook_event: WebhookEvent) -> ServiceResult:
    transfer_id = _object_id(webhook_event)
    if not transfer_id:
        return _missing_object(webhook_event)
    return ServiceResult.success(EscrowLedger.mark_payout_reversed(transfer_id))

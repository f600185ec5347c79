"""
Stripe implementation of the payment gateway.

All Stripe calls go through StripeGatewayAdapter so that timeouts,
idempotency keys, error translation and timing logs are consistent.

Mapping onto Stripe objects:
    create_order    -> PaymentIntent.create
    verify_payment  -> HMAC check, then PaymentIntent.retrieve
    process_refund  -> Refund.create (charge)
    create_payout   -> Transfer.create to a connected account

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key (empty means not configured)
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries inside the SDK (default: 2)
- PAYMENT_GATEWAY_KEY_SECRET: Key for payment signatures
- PAYMENT_WEBHOOK_SECRET: Stripe webhook endpoint secret (whsec_...)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any, NoReturn

import stripe
from django.conf import settings

from payments.adapters.base import (
    GatewayOrder,
    GatewayPayout,
    GatewayRefund,
    PaymentVerification,
    from_minor_units,
    to_minor_units,
)
from payments.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    NoFundAccountError,
    RefundGatewayFailureError,
)

if TYPE_CHECKING:
    from payments.models import PayoutAccount

CAPTURED_INTENT_STATUSES = frozenset({"succeeded", "requires_capture"})


def sign_payment(gateway_order_id: str, payment_id: str, secret: str | None = None) -> str:
    """HMAC-SHA256 hex digest over ``{gateway_order_id}|{payment_id}``."""
    key = secret if secret is not None else settings.PAYMENT_GATEWAY_KEY_SECRET
    message = f"{gateway_order_id}|{payment_id}"
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same inputs always give the same key, so a retried call after a
    timeout is deduplicated by Stripe instead of charging or paying twice.

    Example:
        IdempotencyKeyGenerator.generate("payout", order.id)
        # "payout:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int | str = 1) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeGatewayAdapter:
    """
    PaymentGateway backed by the Stripe SDK.

    Stateless apart from settings; safe to share between threads and
    Celery workers.
    """

    def __init__(self, currency: str | None = None):
        self.currency = (currency or settings.PAYMENT_CURRENCY).lower()

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Configuration
    # =========================================================================

    def is_configured(self) -> bool:
        return bool(settings.STRIPE_SECRET_KEY)

    def _configure_stripe(self) -> None:
        """Configure the SDK, failing closed when no key is set."""
        if not self.is_configured():
            raise GatewayUnavailableError(
                "Payment gateway is not configured",
                error_code="GATEWAY_NOT_CONFIGURED",
            )
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = settings.STRIPE_MAX_RETRIES
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_API_TIMEOUT_SECONDS
        )

    # =========================================================================
    # Payments
    # =========================================================================

    def create_order(
        self,
        amount: int,
        currency: str,
        correlation_id: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayOrder:
        """
        Create a PaymentIntent for an order.

        Args:
            amount: Amount in major units
            currency: ISO 4217 code
            correlation_id: Our order id, stored in intent metadata
            notes: Extra metadata; "attempt" scopes the idempotency key
        """
        self._configure_stripe()
        log_context = {
            "operation": "create_order",
            "amount": amount,
            "currency": currency,
            "correlation_id": str(correlation_id),
        }
        start_time = time.time()
        self.get_logger().info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                metadata={"order_id": str(correlation_id), **(notes or {})},
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_order", correlation_id, attempt=(notes or {}).get("attempt", 1)
                ),
            )
        except Exception as e:
            self._handle_stripe_error(e, log_context, start_time)

        self._log_completed(log_context, start_time, gateway_order_id=intent.id)
        return GatewayOrder(
            gateway_order_id=intent.id,
            amount=from_minor_units(intent.amount),
            currency=intent.currency,
            client_secret=intent.client_secret,
        )

    def verify_payment(
        self,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
    ) -> PaymentVerification:
        """
        Check the client-supplied signature, then that Stripe captured the intent.

        The signature is compared in constant time. An invalid signature
        never reaches Stripe.
        """
        expected = sign_payment(gateway_order_id, payment_id)
        if not signature or not hmac.compare_digest(expected, signature):
            return PaymentVerification(valid=False, details={"reason": "signature_mismatch"})

        self._configure_stripe()
        log_context = {
            "operation": "verify_payment",
            "gateway_order_id": gateway_order_id,
            "payment_id": payment_id,
        }
        start_time = time.time()
        try:
            intent = stripe.PaymentIntent.retrieve(gateway_order_id)
        except Exception as e:
            self._handle_stripe_error(e, log_context, start_time)

        self._log_completed(log_context, start_time, status=intent.status)
        valid = intent.status in CAPTURED_INTENT_STATUSES
        return PaymentVerification(
            valid=valid,
            details={
                "status": intent.status,
                "amount": from_minor_units(intent.amount),
                **({} if valid else {"reason": "not_captured"}),
            },
        )

    # =========================================================================
    # Refunds & Payouts
    # =========================================================================

    def process_refund(self, payment_id: str, amount: int, idempotency_key: str) -> GatewayRefund:
        """
        Refund part or all of a captured charge.

        Raises:
            RefundGatewayFailureError: Stripe refused the refund
            GatewayUnavailableError: Transient failure, safe to retry with
                the same idempotency key
        """
        self._configure_stripe()
        log_context = {
            "operation": "process_refund",
            "payment_id": payment_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }
        start_time = time.time()
        self.get_logger().info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.create(
                charge=payment_id,
                amount=to_minor_units(amount),
                idempotency_key=idempotency_key,
            )
        except (stripe.CardError, stripe.InvalidRequestError) as e:
            self._log_failed(e, log_context, start_time)
            raise RefundGatewayFailureError(
                str(getattr(e, "user_message", None) or e),
                gateway_code=getattr(e, "code", None),
            ) from e
        except Exception as e:
            self._handle_stripe_error(e, log_context, start_time)

        self._log_completed(log_context, start_time, refund_id=refund.id, status=refund.status)
        return GatewayRefund(refund_id=refund.id, status=refund.status)

    def create_payout(
        self,
        fund_account: PayoutAccount | None,
        amount: int,
        reference: str,
    ) -> GatewayPayout:
        """
        Transfer an editor's earning to their connected account.

        Raises:
            NoFundAccountError: No verified, payout-enabled account, or
                Stripe rejected the destination
            GatewayUnavailableError: Transient failure
        """
        if fund_account is None or not fund_account.is_payable:
            raise NoFundAccountError(
                "Payee has no verified payout account",
                details={"reference": reference},
            )

        self._configure_stripe()
        log_context = {
            "operation": "create_payout",
            "destination": fund_account.stripe_account_id,
            "amount": amount,
            "reference": reference,
        }
        start_time = time.time()
        self.get_logger().info("Starting Stripe operation", extra=log_context)

        try:
            transfer = stripe.Transfer.create(
                amount=to_minor_units(amount),
                currency=self.currency,
                destination=fund_account.stripe_account_id,
                transfer_group=reference,
                metadata={"reference": reference},
                idempotency_key=IdempotencyKeyGenerator.generate("payout", reference),
            )
        except stripe.InvalidRequestError as e:
            self._log_failed(e, log_context, start_time)
            raise NoFundAccountError(str(e), gateway_code=getattr(e, "code", None)) from e
        except Exception as e:
            self._handle_stripe_error(e, log_context, start_time)

        self._log_completed(log_context, start_time, payout_id=transfer.id)
        return GatewayPayout(payout_id=transfer.id, status="processing")

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook_signature(self, raw_body: bytes, signature_header: str) -> bool:
        """
        Check a Stripe-format header (``t=...,v1=...``) against the raw body.

        Signatures older than the SDK tolerance (5 minutes) are rejected.
        """
        if not signature_header or not settings.PAYMENT_WEBHOOK_SECRET:
            return False
        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"),
                signature_header,
                settings.PAYMENT_WEBHOOK_SECRET,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            self.get_logger().warning("Webhook signature rejected: %s", e)
            return False
        return True

    # =========================================================================
    # Logging & Error Translation
    # =========================================================================

    def _log_completed(self, log_context: dict[str, Any], start_time: float, **result: Any) -> None:
        duration_ms = (time.time() - start_time) * 1000
        self.get_logger().info(
            "Stripe operation completed",
            extra={**log_context, **result, "duration_ms": duration_ms},
        )

    def _log_failed(self, error: Exception, log_context: dict[str, Any], start_time: float) -> None:
        duration_ms = (time.time() - start_time) * 1000
        self.get_logger().warning(
            "Stripe rejected %s: %s",
            log_context["operation"],
            error,
            extra={**log_context, "duration_ms": duration_ms},
        )

    def _handle_stripe_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        start_time: float,
    ) -> NoReturn:
        """
        Translate any remaining Stripe exception into GatewayUnavailableError.

        Operation-specific permanent failures are translated by the
        caller before reaching here. Everything else is treated as
        transient.
        """
        if isinstance(error, GatewayError):
            raise error

        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": (time.time() - start_time) * 1000}

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            code = "rate_limit"
        elif isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            code = "api_connection_error"
        elif isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            code = "authentication_error"
        elif isinstance(error, stripe.StripeError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            code = getattr(error, "code", None) or "api_error"
        else:
            logger.error(
                "Unexpected error from Stripe: %s",
                type(error).__name__,
                extra=log_context,
                exc_info=True,
            )
            code = "unknown_error"

        raise GatewayUnavailableError(
            "Payment gateway unavailable. Please retry.",
            gateway_code=code,
        ) from error

"""
Payment-specific exceptions for escrow and settlement operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── InvalidAmountError - Amount below minimum, mismatched or zero (ValidationError)
    ├── OrderNotFoundError - No order for a gateway correlation id (NotFoundError)
    ├── SignatureInvalidError - Payment signature failed verification
    ├── PayoutIneligibleError - Editor cannot receive a payout yet
    ├── DeliveryConfirmationError - Download confirmation rejected
    └── GatewayError - Base for errors raised by the gateway adapter
        ├── GatewayUnavailableError - Timeout, outage, rate limit (transient, retry)
        ├── RefundGatewayFailureError - Gateway refused the refund (permanent)
        └── NoFundAccountError - Editor has no usable payout account (permanent)

    AlreadySettledError - Operation on a settled order (ConflictError)
    StaleTransitionError - Lost compare-and-swap race (ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (ConflictError)

Usage:
    from payments.exceptions import GatewayError, StaleTransitionError

    try:
        EscrowLedger.release(order, trigger="download_confirmed")
    except StaleTransitionError:
        order = Order.objects.get(pk=order.pk)  # someone else moved it
    except GatewayError as e:
        if e.is_retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Inherits from BaseApplicationError for consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


class InvalidAmountError(PaymentError, ValidationError):
    """
    Raised when an amount cannot be settled.

    Use for:
    - Amount below ORDER_MINIMUM_AMOUNT
    - Amount that does not match the order
    - A refund that computes to zero
    - Initiating payment for an order that is not awaiting one
    """

    default_error_code: str = "INVALID_AMOUNT"


class OrderNotFoundError(PaymentError, NotFoundError):
    """Raised when no order matches a gateway order id or order id."""

    default_error_code: str = "ORDER_NOT_FOUND"


class SignatureInvalidError(PaymentError):
    """
    Raised when a payment or webhook signature does not verify.

    For payment verification the order is moved to PAYMENT_FAILED before
    this is raised.
    """

    default_error_code: str = "SIGNATURE_INVALID"


class PayoutIneligibleError(PaymentError):
    """
    Raised when an editor cannot be paid out immediately.

    Release does not raise this: it accrues the earning to the editor's
    pending-payout balance instead. Admin payout retries use it.
    """

    default_error_code: str = "PAYOUT_INELIGIBLE"


class DeliveryConfirmationError(PaymentError, PermissionDeniedError):
    """
    Raised when a client's download confirmation is rejected.

    Error codes:
        NOT_ORDER_CLIENT, CONFIRM_TEXT_MISMATCH, TOKEN_INVALID,
        RATING_REQUIRED, NOT_DELIVERED
    """

    default_error_code: str = "DELIVERY_CONFIRMATION_REJECTED"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentError):
    """
    Base exception for errors translated from the payment gateway SDK.

    Attributes:
        gateway_code: The gateway's own error code, if any
        is_retryable: Whether the same call may succeed later

    Example:
        try:
            adapter.process_refund(...)
        except GatewayError as e:
            if e.is_retryable:
                refund.schedule_retry()
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code


class GatewayUnavailableError(GatewayError):
    """
    The gateway could not be reached or did not answer in time.

    Covers network errors, timeouts, 5xx responses, rate limiting and a
    missing gateway configuration. The call may have succeeded on the
    gateway's side, so retries must reuse the idempotency key.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class RefundGatewayFailureError(GatewayError):
    """
    The gateway refused the refund (invalid payment, already refunded,
    card errors). The refund falls back to a wallet credit.
    """

    default_error_code: str = "REFUND_GATEWAY_FAILURE"
    is_retryable: bool = False


class NoFundAccountError(GatewayError):
    """The editor has no verified payout account the gateway accepts."""

    default_error_code: str = "NO_FUND_ACCOUNT"
    is_retryable: bool = False


# =============================================================================
# State Exceptions
# =============================================================================


class AlreadySettledError(ConflictError):
    """
    Raised when an operation targets an order whose money has already
    been settled or whose workflow status is terminal.

    Callers treat this as an idempotent no-op, not a hard failure.
    """

    default_error_code: str = "ALREADY_SETTLED"


class StaleTransitionError(ConflictError):
    """
    Raised when a compare-and-swap write matched no row.

    Another writer changed the order's phase or status between read and
    write. The caller should reload the order before deciding anything.
    """

    default_error_code: str = "STALE_TRANSITION"


class InvalidStateTransitionError(ConflictError):
    """Raised when an FSM transition is not allowed from the current state."""

    default_error_code: str = "INVALID_STATE_TRANSITION"

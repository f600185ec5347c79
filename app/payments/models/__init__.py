"""
Payment domain models.

- Refund: Money returned to a client
- Payment: Append-only settlement record (escrow release or refund)
- PayoutAccount: Editor's connected payout destination
- WebhookEvent: Gateway webhook event tracking for idempotent processing
"""

from payments.models.payment import Payment
from payments.models.payout_account import PayoutAccount
from payments.models.refund import Refund
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "Payment",
    "PayoutAccount",
    "Refund",
    "WebhookEvent",
]

"""
Payment services.

- EscrowLedger: Money transitions on orders (hold, release, refund, disputes)
- RefundService: Gateway refunds with wallet fallback and retries
- DeliveryService: Client download confirmation that releases escrow
- SettlementNotifier: Chat messages and notifications for settlement events
"""

from payments.services.delivery_service import DeliveryService
from payments.services.escrow_ledger import (
    ConfirmResult,
    Eligible,
    EscrowLedger,
    Ineligible,
    InitiateResult,
    PayoutEligibility,
    RefundResult,
    ReleaseResult,
    check_payout_eligibility,
)
from payments.services.notifier import SettlementNotifier
from payments.services.refund_service import RefundService

__all__ = [
    "ConfirmResult",
    "DeliveryService",
    "Eligible",
    "EscrowLedger",
    "Ineligible",
    "InitiateResult",
    "PayoutEligibility",
    "RefundResult",
    "RefundService",
    "ReleaseResult",
    "SettlementNotifier",
    "check_payout_eligibility",
]

"""
Celery workers for time-driven settlement.

- run_settlement_sweeps: Hourly expiry, overdue and grace-refund sweeps
- retry_pending_refunds: Retries refunds whose backoff has elapsed or that stalled
- retry_stalled_payouts: Creates transfers for released orders with none recorded
"""

from payments.workers.payout_retry import retry_stalled_payouts
from payments.workers.refund_retry import retry_pending_refunds
from payments.workers.settlement_scheduler import run_settlement_sweeps

__all__ = [
    "retry_pending_refunds",
    "retry_stalled_payouts",
    "run_settlement_sweeps",
]

"""
Tests for the payments app.

- test_escrow_ledger.py: Payment, release, refund, overdue and dispute transitions
- test_refund_service.py: Gateway refunds, wallet fallback and retries
- test_delivery_service.py: Download confirmation checks
- test_settlement_scheduler.py: Expiry, overdue and grace-refund sweeps
- test_webhooks.py: Webhook endpoint, handlers and processing tasks
- test_adapters.py: Stripe adapter with the SDK patched
- test_views.py: API endpoints and error mapping

Usage:
    pytest payments/tests/
    pytest payments/tests/test_escrow_ledger.py -k release
"""

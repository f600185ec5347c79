"""
Payment gateway webhook handling.

- views.payment_webhook: Signature check, storage and queueing
- handlers: Event type -> ledger operation routing
"""

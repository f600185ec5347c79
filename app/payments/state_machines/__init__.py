"""
State machine enums for payment models.
"""

from payments.state_machines.states import (
    PaymentRecordStatus,
    PaymentType,
    PayoutAccountStatus,
    RefundInitiator,
    RefundMethod,
    RefundReason,
    RefundStatus,
    WebhookEventStatus,
)

__all__ = [
    "PaymentRecordStatus",
    "PaymentType",
    "PayoutAccountStatus",
    "RefundInitiator",
    "RefundMethod",
    "RefundReason",
    "RefundStatus",
    "WebhookEventStatus",
]

"""
Payment gateway interface.

The rest of the system works in major currency units. Adapters convert
to and from the gateway's minor unit at this boundary, exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from payments.models import PayoutAccount

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount: int) -> int:
    """Major currency units to the gateway's minor unit (1000 -> 100000)."""
    return int(amount) * MINOR_UNITS_PER_MAJOR


def from_minor_units(amount: int) -> int:
    """Minor units back to major units, rounding half up."""
    major = Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR
    return int(major.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class GatewayOrder:
    gateway_order_id: str
    amount: int
    currency: str
    client_secret: str | None = None


@dataclass(frozen=True)
class PaymentVerification:
    valid: bool
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayRefund:
    refund_id: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class GatewayPayout:
    payout_id: str
    status: str


class PaymentGateway(Protocol):
    """
    Operations the escrow ledger needs from a payment gateway.

    Implementations raise ``payments.exceptions.GatewayError`` subclasses
    and never leak SDK exceptions.
    """

    def is_configured(self) -> bool: ...

    def create_order(
        self,
        amount: int,
        currency: str,
        correlation_id: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayOrder: ...

    def verify_payment(
        self,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
    ) -> PaymentVerification: ...

    def process_refund(
        self,
        payment_id: str,
        amount: int,
        idempotency_key: str,
    ) -> GatewayRefund: ...

    def create_payout(
        self,
        fund_account: PayoutAccount | None,
        amount: int,
        reference: str,
    ) -> GatewayPayout: ...

    def verify_webhook_signature(self, raw_body: bytes, signature_header: str) -> bool: ...

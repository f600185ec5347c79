"""
Payments app: escrow and settlement for marketplace orders.

This app handles:
- Payment initiation and verification against the gateway
- Escrow hold, release and editor payout
- Refunds to the original payment or the client's wallet
- Gateway webhooks
- Scheduled sweeps for unpaid, overdue and grace-expired orders

Related apps:
    - orders: Order, its settlement phase and workflow status
    - authentication: User balances and KYC status
    - notifications, chat: settlement notifications and system messages

Usage:
    from payments.services import EscrowLedger

    result = EscrowLedger.initiate(order)
    EscrowLedger.confirm(gateway_order_id, payment_id, signature)
"""

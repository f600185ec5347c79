"""
Orders application.

Orders carry the money snapshot (amount, fee, editor earning), the
workflow status and the settlement phase that the escrow ledger in
``payments`` advances.

Key components:
    - Order, Rating, FinalDelivery models
    - orders.money: fee and refund arithmetic
    - OrderService: workflow operations owned by the parties
"""

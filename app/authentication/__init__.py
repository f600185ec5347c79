"""
Authentication application.

Key components:
    - User model: Email-based user with marketplace role, KYC status
      and settlement balances
    - BalanceService: Atomic balance increments

Usage:
    from authentication.models import User, UserRole
    from authentication.services import BalanceService
"""

"""
Tests for the authentication app.

- test_models.py: User roles, KYC flags and balance fields
- test_services.py: BalanceService increments

Usage:
    pytest authentication/tests/
"""

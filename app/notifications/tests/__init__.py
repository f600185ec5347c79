"""
Tests for the notifications app.

- test_services.py: NotificationService creation, idempotency keys and read state
"""

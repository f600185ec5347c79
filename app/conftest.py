"""
Root pytest configuration for the Django project.

pytest-django sets up Django from DJANGO_SETTINGS_MODULE (see
pyproject.toml). This module adjusts settings for speed and marks tests
by filename. App-specific fixtures live in each app's tests/conftest.py.
"""

import pytest


def pytest_configure():
    """Adjust Django settings before tests run."""
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # The test client speaks plain HTTP
    settings.SECURE_SSL_REDIRECT = False

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # Gateway credentials for signing test payloads; the SDK itself is mocked
    settings.STRIPE_SECRET_KEY = "sk_test_settlement"
    settings.PAYMENT_GATEWAY_KEY_SECRET = "test-gateway-key-secret"
    settings.PAYMENT_WEBHOOK_SECRET = "test-webhook-secret"
    settings.CELERY_TASK_ALWAYS_EAGER = False


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full order journeys)
    - test_views.py, test_services.py, test_tasks.py, etc. → integration
    - test_models.py, test_money.py, test_adapters.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_escrow_ledger.py",
        "test_refund_service.py",
        "test_delivery_service.py",
        "test_settlement_scheduler.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_money.py",
        "test_serializers.py",
        "test_adapters.py",
        "test_state_transitions.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)

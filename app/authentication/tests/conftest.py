"""
Test configuration and fixtures for authentication tests.
"""

import pytest

from authentication.tests.factories import ClientFactory, EditorFactory


@pytest.fixture
def client_user(db):
    """A marketplace client with empty balances."""
    return ClientFactory()


@pytest.fixture
def editor(db):
    """A KYC-verified editor with empty balances."""
    return EditorFactory()

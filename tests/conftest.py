# ===============================================================================
# PYTEST CONFIGURATION FOR DEALVAULT
# ===============================================================================
"""
Global test configuration for DealVault.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- Shared model factories live in tests/factories/
- Naming convention: test_{feature}.py

Test Discovery:
- Run specific app tests: pytest tests/vouchers/
- Run all tests: pytest tests/
- Run against PostgreSQL (enables the threaded race tests): DB_ENGINE=postgresql pytest
"""

import os

import django


def pytest_configure():
    """Configure Django settings for pytest"""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.test')

    # Configure Django
    django.setup()

# ===============================================================================
# PYTEST FIXTURES
# ===============================================================================

import pytest  # noqa: E402


@pytest.fixture
def customer():
    """Create test customer"""
    from tests.factories.vouchers import create_user

    return create_user('customer')


@pytest.fixture
def business():
    """Create a business with an owning vendor and unlimited allowance"""
    from tests.factories.vouchers import create_business

    return create_business()


@pytest.fixture
def deal(business):
    """Create an active deal priced 9.99"""
    from tests.factories.vouchers import create_deal

    return create_deal(business)

"""
Project-wide pytest configuration.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import django
import pytest


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # Locks use the mocked connection from redis_connection; caching stays local
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full booking-to-settlement journeys)
    - test_views.py, test_services.py, test_tasks.py, etc. → integration
    - test_models.py, test_pricing.py, test_policies.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_payouts.py",
        "test_withdrawals.py",
        "test_idempotency.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_managers.py",
        "test_pricing.py",
        "test_otp.py",
        "test_policies.py",
        "test_adapters.py",
        "test_locks.py",
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


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def redis_connection(mocker):
    """
    Stand-in for the Redis connection behind settlement locks.

    ``set`` grants every lock and ``eval`` reports a successful release.
    Tests that need contention override ``set.return_value``.
    """
    connection = mocker.MagicMock()
    connection.set.return_value = True
    connection.eval.return_value = 1
    mocker.patch("settlement.locks.get_redis_connection", return_value=connection)
    return connection


@pytest.fixture(autouse=True)
def reset_settlement_adapters():
    """Drop injected gateway / payout rail doubles after each test."""
    from settlement.services import PayoutService, SettlementCoordinator

    yield
    PayoutService.set_payout_rail(None)
    SettlementCoordinator.set_gateway(None)

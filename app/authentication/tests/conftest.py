"""
Test configuration and fixtures for authentication tests.

Usage:
    def test_example(driver):
        assert driver.is_assignable_driver
"""

import pytest

from authentication.tests.factories import DriverFactory, ManagerFactory, UserFactory


@pytest.fixture
def user(db):
    """A plain customer."""
    return UserFactory()


@pytest.fixture
def driver(db):
    """An approved driver."""
    return DriverFactory()


@pytest.fixture
def manager(db):
    return ManagerFactory()

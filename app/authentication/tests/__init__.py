"""
Tests for the accounts app.

This package contains:
- conftest.py: user, driver and manager fixtures
- factories.py: UserFactory, DriverFactory, ManagerFactory
- test_managers.py: UserManager (create_user, create_superuser, approved_drivers)
- test_models.py: User defaults, roles and driver assignability

Usage:
    pytest authentication/tests/
    pytest authentication/tests/test_managers.py
"""

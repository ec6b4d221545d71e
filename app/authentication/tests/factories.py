"""
Factory Boy factories for authentication models.

Provides realistic test data generation for:
- User: Customers by default
- DriverFactory: Approved drivers with a UPI payout handle
- ManagerFactory: Fleet managers

Usage:
    from authentication.tests.factories import DriverFactory, UserFactory

    # A customer
    customer = UserFactory()

    # An approved driver
    driver = DriverFactory()

    # A driver still under review
    driver = DriverFactory(driver_approval_status=DriverApprovalStatus.PENDING)
"""

import factory

from authentication.models import DriverApprovalStatus, User, UserRole


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for User model.

    Creates active customers with email-based authentication.

    Examples:
        # Basic customer
        user = UserFactory()

        # Inactive user (deactivated)
        user = UserFactory(is_active=False)
    """

    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    full_name = factory.Faker("name")
    password = factory.PostGenerationMethodCall("set_password", "TestPass123!")
    role = UserRole.CUSTOMER
    is_active = True


class DriverFactory(UserFactory):
    """Approved driver with a valid UPI handle."""

    email = factory.Sequence(lambda n: f"driver{n}@example.com")
    role = UserRole.DRIVER
    driver_approval_status = DriverApprovalStatus.APPROVED
    upi_id = factory.Sequence(lambda n: f"driver{n}@upi")


class ManagerFactory(UserFactory):
    email = factory.Sequence(lambda n: f"manager{n}@example.com")
    role = UserRole.MANAGER

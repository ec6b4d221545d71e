"""
Authentication models.

This module defines the platform user:
- User: e-mail login plus the fleet attributes the settlement core reads
  (role, driver approval, performance rating, payout destination)

Related files:
    - managers.py: Custom user manager for email-based creation

Security:
    - User passwords hashed with Django's configured hasher
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """Platform roles."""

    MANAGER = "MANAGER", "Manager"
    DRIVER = "DRIVER", "Driver"
    CUSTOMER = "CUSTOMER", "Customer"
    ADMIN = "ADMIN", "Admin"


class DriverApprovalStatus(models.TextChoices):
    """
    Onboarding review status for drivers.

    Only APPROVED drivers can be assigned to shipments.
    """

    PENDING = "PENDING", "Pending"
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        full_name: Display name
        phone: Contact number
        role: MANAGER, DRIVER, CUSTOMER or ADMIN
        driver_approval_status: Review status (meaningful for drivers only)
        performance_rating: Rolling rating 0-5, read by payout policies
        upi_id: Default payout destination for driver payouts
        is_active / is_staff: Django account flags
        date_joined / updated_at: Timestamps

    Usage:
        driver = User.objects.create_user(
            email="driver@example.com",
            password="securepassword",
            role=UserRole.DRIVER,
            driver_approval_status=DriverApprovalStatus.APPROVED,
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    full_name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=20, blank=True)

    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.CUSTOMER,
        db_index=True,
    )
    driver_approval_status = models.CharField(
        max_length=20,
        choices=DriverApprovalStatus.choices,
        default=DriverApprovalStatus.PENDING,
        help_text="Driver onboarding review status",
    )
    performance_rating = models.DecimalField(
        max_digits=3,
        decimal_places=2,
        default=5,
        help_text="Driver performance rating (0-5)",
    )
    upi_id = models.CharField(
        max_length=100,
        blank=True,
        help_text="Default UPI handle for payouts",
    )

    # Account status flags
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"

    def __str__(self) -> str:
        return f"{self.email} ({self.role})"

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_manager(self) -> bool:
        return self.role in (UserRole.MANAGER, UserRole.ADMIN)

    @property
    def is_assignable_driver(self) -> bool:
        """True for active drivers whose onboarding was approved."""
        return (
            self.is_active
            and self.is_driver
            and self.driver_approval_status == DriverApprovalStatus.APPROVED
        )

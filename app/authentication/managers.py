"""
Manager for the e-mail login User model.
"""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    """
    Usage:
        customer = User.objects.create_user(email="c@example.com", password="pw")
        driver = User.objects.create_user(email="d@example.com", role="DRIVER")
        drivers = User.objects.approved_drivers()
    """

    def create_user(self, email, password=None, **extra_fields):
        """Users created without a password cannot log in until one is set."""
        if not email:
            raise ValueError("Users must have an email address")

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)

        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", "ADMIN")

        if extra_fields.get("is_staff") is not True or extra_fields.get("is_superuser") is not True:
            raise ValueError("Superusers need is_staff=True and is_superuser=True")

        return self.create_user(email, password, **extra_fields)

    def approved_drivers(self):
        """Active drivers cleared by onboarding review; the pool shipments are assigned from."""
        return self.filter(is_active=True, role="DRIVER", driver_approval_status="APPROVED")

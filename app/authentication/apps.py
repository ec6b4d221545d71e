from django.apps import AppConfig


class AuthenticationConfig(AppConfig):
    """Accounts for customers, drivers, fleet managers and admins."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "authentication"
    verbose_name = "Accounts"

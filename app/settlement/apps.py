"""
Settlement app configuration.
"""

from django.apps import AppConfig


class SettlementConfig(AppConfig):
    """Configuration for the settlement application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "settlement"
    verbose_name = "Settlement"

    def ready(self):
        # Registers the gateway webhook handlers
        from settlement.webhooks import handlers  # noqa: F401

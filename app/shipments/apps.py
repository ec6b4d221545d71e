"""
Shipments app configuration.
"""

from django.apps import AppConfig


class ShipmentsConfig(AppConfig):
    """Configuration for the shipments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "shipments"
    verbose_name = "Shipments"

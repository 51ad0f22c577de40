"""Core application configuration."""

from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Configuration class for the sitehost core app."""

    name = "core"
    default_auto_field = "django.db.models.BigAutoField"
    verbose_name = "Sitehost core"

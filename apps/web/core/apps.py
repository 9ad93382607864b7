"""Django app configuration for vendor tenancy."""

from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Vendors and shared request plumbing."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.web.core"
    label = "core"
    verbose_name = "Vendors"

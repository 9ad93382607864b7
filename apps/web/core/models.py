"""
Core models - Multi-tenancy foundation.

All vendor-scoped models inherit from VendorScopedModel.
"""

from django.db import models

from .managers import VendorScopedManager


class Vendor(models.Model):
    """
    Tenant - a food vendor whose POS locations feed Passline.

    All order data is scoped to a Vendor.
    """

    slug = models.SlugField(unique=True, help_text="URL-safe identifier")
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)

    # Kitchen display configuration
    kds_active_limit = models.PositiveIntegerField(
        default=8,
        help_text="Maximum promoted tickets on the active rail per location",
    )

    # Status
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class VendorScopedModel(models.Model):
    """
    Abstract base for all vendor-scoped models.

    Provides:
    - Automatic vendor FK
    - VendorScopedManager for filtered queries
    - Created/updated timestamps
    """

    vendor = models.ForeignKey(
        Vendor,
        on_delete=models.CASCADE,
        related_name="%(class)ss",  # e.g., vendor.kitchentickets
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = VendorScopedManager()

    class Meta:
        abstract = True

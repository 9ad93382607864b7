"""
Custom managers for multi-tenancy.

VendorScopedManager filters queries by vendor.
"""

from typing import TYPE_CHECKING, TypeVar

from django.db import models

if TYPE_CHECKING:
    from .models import Vendor, VendorScopedModel

_T = TypeVar("_T", bound="VendorScopedModel")


class VendorScopedManager(models.Manager[_T]):
    """
    Manager that filters by vendor.

    Usage:
        tickets = KitchenTicket.objects.for_vendor(vendor).filter(...)
    """

    def for_vendor(self, vendor: "Vendor | int") -> models.QuerySet[_T]:
        """
        Filter queryset by vendor.

        Args:
            vendor: Vendor instance or primary key.

        Returns:
            QuerySet filtered to the vendor.

        Raises:
            ValueError: If no vendor is given.
        """
        if vendor is None:
            msg = "for_vendor() requires a vendor"
            raise ValueError(msg)
        return self.filter(vendor=vendor)

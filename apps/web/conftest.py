"""
Pytest configuration for Django app tests.
"""

from django.core.cache import cache

import pytest

from apps.web.core.models import Vendor
from apps.web.restaurant.models import POSProvider, VendorLocation


@pytest.fixture
def vendor() -> Vendor:
    """Create a test vendor (tenant)."""
    return Vendor.objects.create(
        slug="test-cafe",
        name="Test Cafe",
        email="owner@test-cafe.example.com",
        kds_active_limit=2,
    )


@pytest.fixture
def location(vendor: Vendor) -> VendorLocation:
    """Active Square location for the test vendor."""
    return VendorLocation.objects.create(
        vendor=vendor,
        name="Main Street",
        pos_provider=POSProvider.SQUARE,
        external_location_id="LSQ1",
        access_token="sq-location-token",
        pickup_instructions="Pick up at the side window.",
    )


@pytest.fixture
def mock_location(vendor: Vendor) -> VendorLocation:
    """Active mock-provider location for engine tests."""
    return VendorLocation.objects.create(
        vendor=vendor,
        name="Test Kitchen",
        pos_provider=POSProvider.MOCK,
        external_location_id="mock-location",
    )


@pytest.fixture(autouse=True)
def _clear_cache():
    """Signature failure counts and rate limits live in the default cache."""
    cache.clear()
    yield
    cache.clear()
